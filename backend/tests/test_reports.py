from __future__ import annotations

from decimal import Decimal

from abaops.models.enums import NotificationType
from abaops.services.notifications import create_notification


def test_detailed_report_summary(client, approved_timesheet):
    response = client.post("/api/reports/detailed", json={"start_date": "2026-01-05", "end_date": "2026-01-11"})
    assert response.status_code == 200, response.text
    report = response.json()

    assert len(report["rows"]) == 2
    assert report["rows"][0]["time_in"] == "9:00 AM"
    summary = report["summary"]
    assert Decimal(summary["hours_dr"]) == Decimal("1.50")
    assert Decimal(summary["hours_sv"]) == Decimal("0.50")
    assert Decimal(summary["hours_total"]) == Decimal("2.00")
    assert Decimal(summary["units_dr"]) == Decimal("6.00")
    assert Decimal(summary["units_sv"]) == Decimal("2.00")
    assert summary["session_count"] == 2
    assert summary["timesheet_count"] == 1
    assert report["groups"] == []


def test_report_filters(client, approved_timesheet, timesheet_payload):
    assert client.post("/api/timesheets", json=timesheet_payload(start_date="2026-01-12", end_date="2026-01-16", entries=[
        {"date": "2026-01-12", "start_time": "09:00", "end_time": "10:00", "minutes": 60, "notes": "DR"},
    ])).status_code == 201

    report = client.post("/api/reports/detailed", json={"service_types": ["SV"]}).json()
    assert [row["service_type"] for row in report["rows"]] == ["SV"]

    report = client.post("/api/reports/detailed", json={"statuses": ["DRAFT"]}).json()
    assert report["summary"]["session_count"] == 1
    assert report["rows"][0]["date"] == "2026-01-12"

    report = client.post("/api/reports/detailed", json={"end_date": "2026-01-09"}).json()
    assert report["summary"]["timesheet_count"] == 1


def test_report_grouping(client, approved_timesheet):
    report = client.post("/api/reports/detailed", json={"group_by": "week"}).json()
    assert [group["label"] for group in report["groups"]] == ["Week of 1/5/2026"]
    assert report["groups"][0]["summary"]["session_count"] == 2

    report = client.post("/api/reports/detailed", json={"group_by": "client"}).json()
    assert report["groups"][0]["label"] == "Sam Client"


def test_detailed_report_csv(client, approved_timesheet):
    response = client.get("/api/reports/detailed.csv", params={"service_type": "DR"})
    assert response.status_code == 200, response.text
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("Date,Timesheet,Client")
    assert "Sam Client" in lines[1]
    assert lines[-1].startswith("Sessions,1")


def test_reports_require_permission(client, auth, make_user):
    auth.user = make_user("therapist@example.com")
    assert client.post("/api/reports/detailed", json={}).status_code == 403


def test_dashboard_stats(client, approved_timesheet):
    response = client.get("/api/dashboard/stats")
    assert response.status_code == 200, response.text
    body = response.json()
    assert sum(body["timesheets_by_status"].values()) == 1
    assert body["sections"]["payroll"] is True


def test_activity_feed_and_seen_marker(client, approved_timesheet):
    feed = client.get("/api/dashboard/activity")
    assert feed.status_code == 200, feed.text
    assert feed.json()["items"]
    assert feed.json()["unread"] > 0

    assert client.post("/api/dashboard/activity/seen").json() == {"unread": 0}
    assert client.get("/api/dashboard/activity/unread-count").json() == {"unread": 0}


def test_activity_feed_is_admin_only(client, auth, make_user):
    auth.user = make_user("therapist@example.com")
    assert client.get("/api/dashboard/activity").status_code == 403


def test_notifications_read_flow(client, db, admin_user):
    first = create_notification(
        db,
        user_id=admin_user.id,
        notif_type=NotificationType.SYSTEM,
        title="Heads up",
        message="First",
    )
    create_notification(
        db,
        user_id=admin_user.id,
        notif_type=NotificationType.INVOICE_GENERATED,
        title="Invoices",
        message="Second",
    )
    db.commit()

    assert client.get("/api/notifications/unread-count").json() == {"unread": 2}
    listing = client.get("/api/notifications", params={"type": "SYSTEM"})
    assert [row["id"] for row in listing.json()] == [first.id]

    response = client.post(f"/api/notifications/{first.id}/read")
    assert response.status_code == 200, response.text
    assert client.get("/api/notifications/unread-count").json() == {"unread": 1}

    client.post("/api/notifications/read-all")
    assert client.get("/api/notifications", params={"unread_only": True}).json() == []


def test_health_and_version(client):
    response = client.get("/healthz")
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "ok"
    assert response.json()["email_queue_pending"] == 0

    version = client.get("/version").json()
    assert version["version"] == "1.0.0"
