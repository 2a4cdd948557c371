from __future__ import annotations

from abaops.models.email_queue import EmailQueueItem
from abaops.models.enums import EmailQueueContext, EmailQueueEntityType, EmailQueueStatus, Role, TimesheetStatus
from abaops.models.notification import Notification
from abaops.models.timesheet import Timesheet


def _create(client, payload):
    response = client.post("/api/timesheets", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_assigns_sequential_numbers(client, timesheet_payload):
    first = _create(client, timesheet_payload())
    assert first["timesheet_number"] == "T-1001"
    assert first["status"] == "DRAFT"
    assert len(first["entries"]) == 2
    assert first["total_minutes"] == 120

    second = _create(
        client,
        timesheet_payload(
            entries=[{"date": "2026-01-06", "start_time": "13:00", "end_time": "14:00", "minutes": 60, "notes": "DR"}]
        ),
    )
    assert second["timesheet_number"] == "T-1002"


def test_bcba_timesheets_have_their_own_sequence(client, timesheet_payload):
    payload = timesheet_payload(is_bcba=True, provider_id=None, insurance_id=None)
    created = _create(client, payload)
    assert created["timesheet_number"] == "BT-1001"
    assert created["is_bcba"] is True


def test_bcba_timesheets_may_overlap(client, timesheet_payload):
    payload = timesheet_payload(is_bcba=True, provider_id=None, insurance_id=None)
    first = _create(client, payload)
    second = _create(client, payload)
    assert [first["timesheet_number"], second["timesheet_number"]] == ["BT-1001", "BT-1002"]


def test_saturday_entries_are_rejected(client, timesheet_payload):
    payload = timesheet_payload(
        entries=[{"date": "2026-01-10", "start_time": "09:00", "end_time": "10:00", "minutes": 60, "notes": "DR"}]
    )
    response = client.post("/api/timesheets", json=payload)
    assert response.status_code == 400
    assert "Saturdays" in response.json()["detail"]


def test_minutes_must_match_the_time_range(client, timesheet_payload):
    payload = timesheet_payload(
        entries=[{"date": "2026-01-05", "start_time": "09:00", "end_time": "10:00", "minutes": 45, "notes": "DR"}]
    )
    response = client.post("/api/timesheets", json=payload)
    assert response.status_code == 400
    assert "Minutes mismatch" in response.json()["detail"]


def test_regular_timesheet_requires_insurance(client, timesheet_payload):
    response = client.post("/api/timesheets", json=timesheet_payload(insurance_id=None))
    assert response.status_code == 400
    assert response.json()["detail"] == "Insurance is required"


def test_overlap_with_existing_timesheet_is_a_conflict(client, timesheet_payload):
    existing = _create(client, timesheet_payload())
    overlapping = timesheet_payload(
        entries=[{"date": "2026-01-05", "start_time": "10:00", "end_time": "10:45", "minutes": 45, "notes": "DR"}]
    )

    response = client.post("/api/timesheets", json=overlapping)
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "OVERLAP_CONFLICT"
    conflict = detail["conflicts"][0]
    assert conflict["scope"] == "both"
    assert conflict["conflicting"]["timesheet_id"] == existing["id"]

    check = client.post("/api/timesheets/check-overlaps", json=overlapping)
    assert check.status_code == 200, check.text
    assert check.json()["has_conflicts"] is True

    check = client.post(f"/api/timesheets/check-overlaps?exclude_timesheet_id={existing['id']}", json=overlapping)
    assert check.json()["has_conflicts"] is False


def test_overlap_inside_one_timesheet(client, timesheet_payload):
    payload = timesheet_payload(
        entries=[
            {"date": "2026-01-05", "start_time": "09:00", "end_time": "10:00", "minutes": 60, "notes": "DR"},
            {"date": "2026-01-05", "start_time": "09:30", "end_time": "10:30", "minutes": 60, "notes": "DR"},
        ]
    )
    response = client.post("/api/timesheets", json=payload)
    assert response.status_code == 400
    assert response.json()["detail"]["conflicts"][0]["scope"] == "internal"


def test_back_to_back_entries_do_not_overlap(client, timesheet_payload):
    created = _create(client, timesheet_payload())
    assert [entry["end_time"] for entry in created["entries"]] == ["10:30", "11:00"]


def test_submit_approve_enqueues_email(client, db, timesheet_payload, admin_user, make_user, auth):
    therapist = make_user("therapist@example.com")
    auth.user = therapist
    created = _create(client, timesheet_payload())
    assert created["user_id"] == therapist.id

    response = client.post(f"/api/timesheets/{created['id']}/submit")
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "SUBMITTED"
    assert db.query(Notification).filter(Notification.user_id == admin_user.id).count() == 1

    auth.user = admin_user
    response = client.post(f"/api/timesheets/{created['id']}/approve")
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["ok"] is True
    assert body["data"]["status"] == "APPROVED"

    item = db.query(EmailQueueItem).filter(EmailQueueItem.entity_id == created["id"]).one()
    assert item.entity_type == EmailQueueEntityType.REGULAR
    assert item.context == EmailQueueContext.MAIN
    assert item.status == EmailQueueStatus.QUEUED
    assert db.query(Notification).filter(Notification.user_id == therapist.id).count() == 1


def test_approve_twice_is_refused(client, db, approved_timesheet):
    response = client.post(f"/api/timesheets/{approved_timesheet['id']}/approve")
    assert response.status_code == 400
    assert response.json()["ok"] is False
    assert response.json()["code"] == "VALIDATION_ERROR"

    timesheet = db.get(Timesheet, approved_timesheet["id"])
    timesheet.status = TimesheetStatus.SUBMITTED
    db.commit()
    response = client.post(f"/api/timesheets/{approved_timesheet['id']}/approve")
    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_QUEUED"
    assert db.query(EmailQueueItem).count() == 1


def test_users_cannot_approve(client, timesheet_payload, make_user, auth):
    created = _create(client, timesheet_payload())
    auth.user = make_user("therapist@example.com")
    response = client.post(f"/api/timesheets/{created['id']}/approve")
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


def test_reject_then_edit(client, timesheet_payload):
    created = _create(client, timesheet_payload())
    response = client.post(f"/api/timesheets/{created['id']}/reject", json={"reason": "Missing signature"})
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "REJECTED"
    assert response.json()["rejection_reason"] == "Missing signature"

    updated = timesheet_payload(
        entries=[{"date": "2026-01-07", "start_time": "08:00", "end_time": "09:00", "minutes": 60, "notes": "DR"}]
    )
    response = client.put(f"/api/timesheets/{created['id']}", json=updated)
    assert response.status_code == 200, response.text
    assert [entry["date"] for entry in response.json()["entries"]] == ["2026-01-07"]


def test_approved_timesheets_are_locked(client, timesheet_payload, approved_timesheet):
    response = client.put(f"/api/timesheets/{approved_timesheet['id']}", json=timesheet_payload())
    assert response.status_code == 400
    response = client.delete(f"/api/timesheets/{approved_timesheet['id']}")
    assert response.status_code == 400


def test_delete_draft_timesheet(client, timesheet_payload):
    created = _create(client, timesheet_payload())
    response = client.delete(f"/api/timesheets/{created['id']}")
    assert response.status_code == 204
    assert client.get(f"/api/timesheets/{created['id']}").status_code == 404


def test_users_only_list_their_own_timesheets(client, timesheet_payload, make_user, auth, admin_user):
    _create(client, timesheet_payload())
    auth.user = make_user("therapist@example.com", role=Role.USER)
    _create(
        client,
        timesheet_payload(
            entries=[{"date": "2026-01-08", "start_time": "09:00", "end_time": "10:00", "minutes": 60, "notes": "DR"}]
        ),
    )
    response = client.get("/api/timesheets")
    assert response.status_code == 200, response.text
    assert response.json()["total"] == 1

    auth.user = admin_user
    assert client.get("/api/timesheets").json()["total"] == 2


def test_batch_archive_hides_timesheets(client, approved_timesheet):
    response = client.post("/api/timesheets/batch/archive", json={"ids": [approved_timesheet["id"]]})
    assert response.status_code == 200, response.text
    assert response.json()["archived"] == 1
    assert client.get("/api/timesheets").json()["total"] == 0
    assert client.get("/api/timesheets?archived=true").json()["total"] == 1


def test_timesheet_pdf_download(client, approved_timesheet):
    response = client.get(f"/api/timesheets/{approved_timesheet['id']}/pdf")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")
