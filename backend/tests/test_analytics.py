from __future__ import annotations

from datetime import date
from decimal import Decimal

from abaops.db.base import utcnow
from abaops.services.analytics import build_filters


def _paid_invoice(client, master_data, amount="30.00"):
    invoice = client.post(
        "/api/invoices",
        json={"client_id": master_data.client.id, "start_date": "2026-01-05", "end_date": "2026-01-09"},
    ).json()
    client.post(f"/api/invoices/{invoice['id']}/approve")
    response = client.post(
        f"/api/invoices/{invoice['id']}/payments",
        json={"amount": amount, "payment_date": "2026-01-20"},
    )
    assert response.status_code == 201, response.text
    return invoice


def test_default_range_is_the_last_twelve_months():
    filters = build_filters(today=date(2026, 3, 31))
    assert filters.start_date == date(2025, 3, 28)
    assert filters.end_date == date(2026, 3, 31)


def test_analytics_totals(client, master_data, approved_timesheet):
    _paid_invoice(client, master_data)
    response = client.get("/api/analytics")
    assert response.status_code == 200, response.text
    body = response.json()

    summary = body["summary"]
    assert summary["total_timesheets"] == 1
    assert summary["approved_timesheets"] == 1
    assert summary["total_invoices"] == 1
    assert Decimal(summary["total_billed"]) == Decimal("72.00")
    assert Decimal(summary["total_paid"]) == Decimal("30.00")
    assert Decimal(summary["total_outstanding"]) == Decimal("42.00")

    assert len(body["revenue_trends"]) == 13
    this_month = utcnow().strftime("%Y-%m")
    current = next(point for point in body["revenue_trends"] if point["month"] == this_month)
    assert Decimal(current["billed"]) == Decimal("72.00")

    provider = body["provider_productivity"][0]
    assert provider["name"] == "Jane Provider"
    assert Decimal(provider["hours"]) == Decimal("2.00")

    waterfall = {step["label"]: Decimal(step["value"]) for step in body["financial_waterfall"]}
    assert waterfall["Outstanding"] == Decimal("42.00")

    insurance = body["insurance_comparisons"][0]
    assert insurance["name"] == "Medicaid"
    assert Decimal(insurance["total_paid"]) == Decimal("30.00")

    assert body["invoice_status_distribution"] == [
        {"status": "PARTIALLY_PAID", "label": "PARTIALLY PAID", "count": 1}
    ]


def test_filters_narrow_the_report(client, master_data, approved_timesheet):
    body = client.get("/api/analytics", params={"provider_id": master_data.provider.id + 100}).json()
    assert body["summary"]["total_timesheets"] == 0

    body = client.get("/api/analytics", params={"start_date": "2020-01-01", "end_date": "2020-02-15"}).json()
    assert body["summary"]["total_timesheets"] == 0
    assert [point["month"] for point in body["timesheet_trends"]] == ["2020-01", "2020-02"]


def test_inverted_range_is_rejected(client):
    response = client.get("/api/analytics", params={"start_date": "2026-02-01", "end_date": "2026-01-01"})
    assert response.status_code == 400


def test_analytics_requires_permission(client, auth, make_user):
    auth.user = make_user("therapist@example.com")
    assert client.get("/api/analytics").status_code == 403
