from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from abaops.db.base import utcnow
from abaops.models.invoice import Invoice
from abaops.models.timesheet import TimesheetEntry


def _create_invoice(client, master_data, **overrides):
    payload = {
        "client_id": master_data.client.id,
        "start_date": "2026-01-05",
        "end_date": "2026-01-09",
    }
    payload.update(overrides)
    return client.post("/api/invoices", json=payload)


def test_create_invoice_from_approved_timesheets(client, db, master_data, approved_timesheet):
    response = _create_invoice(client, master_data)
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["invoice_number"].startswith("INV-")
    assert body["status"] == "DRAFT"
    assert Decimal(body["total_amount"]) == Decimal("72.00")
    assert Decimal(body["outstanding"]) == Decimal("72.00")
    assert len(body["entries"]) == 2

    supervision = next(entry for entry in body["entries"] if entry["entry_type"] == "SV")
    assert Decimal(supervision["units"]) == Decimal("2.00")
    assert Decimal(supervision["amount"]) == Decimal("0.00")

    db.expire_all()
    assert all(entry.invoiced for entry in db.query(TimesheetEntry).all())


def test_entries_are_never_billed_twice(client, master_data, approved_timesheet):
    assert _create_invoice(client, master_data).status_code == 201
    response = _create_invoice(client, master_data)
    assert response.status_code == 400
    assert "No billable timesheet entries" in response.json()["detail"]


def test_draft_timesheets_are_not_billable(client, master_data, timesheet_payload):
    assert client.post("/api/timesheets", json=timesheet_payload()).status_code == 201
    response = _create_invoice(client, master_data)
    assert response.status_code == 400
    assert response.json()["detail"] == "No approved timesheets found for this client and period"


def test_payments_move_invoice_to_paid(client, master_data, approved_timesheet):
    invoice = _create_invoice(client, master_data).json()

    response = client.post(f"/api/invoices/{invoice['id']}/approve")
    assert response.status_code == 200, response.text
    approved = response.json()
    assert approved["status"] == "SENT"
    assert approved["view_token"]

    response = client.post(
        f"/api/invoices/{invoice['id']}/payments",
        json={"amount": "30.00", "payment_date": "2026-01-20", "method": "ACH"},
    )
    assert response.status_code == 201, response.text
    current = client.get(f"/api/invoices/{invoice['id']}").json()
    assert current["status"] == "PARTIALLY_PAID"
    assert Decimal(current["outstanding"]) == Decimal("42.00")

    response = client.post(
        f"/api/invoices/{invoice['id']}/payments",
        json={"amount": "42.00", "payment_date": "2026-01-27"},
    )
    assert response.status_code == 201, response.text
    current = client.get(f"/api/invoices/{invoice['id']}").json()
    assert current["status"] == "PAID"
    assert Decimal(current["outstanding"]) == Decimal("0.00")
    assert len(current["payments"]) == 2

    response = client.post(
        f"/api/invoices/{invoice['id']}/payments",
        json={"amount": "1.00", "payment_date": "2026-01-28"},
    )
    assert response.status_code == 400


def test_adjustments_change_outstanding(client, master_data, approved_timesheet):
    invoice = _create_invoice(client, master_data).json()
    client.post(f"/api/invoices/{invoice['id']}/approve")

    response = client.post(
        f"/api/invoices/{invoice['id']}/adjustments",
        json={"amount": "-72.00", "reason": "Write-off"},
    )
    assert response.status_code == 201, response.text
    current = client.get(f"/api/invoices/{invoice['id']}").json()
    assert Decimal(current["adjustments"]) == Decimal("-72.00")
    assert Decimal(current["outstanding"]) == Decimal("0.00")
    assert current["status"] == "PAID"


def test_void_releases_entries_for_rebilling(client, master_data, approved_timesheet):
    invoice = _create_invoice(client, master_data).json()
    response = client.post(f"/api/invoices/{invoice['id']}/void")
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "VOID"

    response = _create_invoice(client, master_data)
    assert response.status_code == 201, response.text
    assert response.json()["invoice_number"] != invoice["invoice_number"]


def test_delete_only_drafts(client, master_data, approved_timesheet):
    invoice = _create_invoice(client, master_data).json()
    client.post(f"/api/invoices/{invoice['id']}/approve")
    assert client.delete(f"/api/invoices/{invoice['id']}").status_code == 400


def test_public_link_and_expiry(client, db, master_data, approved_timesheet):
    invoice = _create_invoice(client, master_data).json()
    token = client.post(f"/api/invoices/{invoice['id']}/approve").json()["view_token"]

    response = client.get(f"/api/public/invoices/{token}")
    assert response.status_code == 200, response.text
    assert response.json()["invoice_number"] == invoice["invoice_number"]
    assert client.get("/api/public/invoices/not-a-token").status_code == 404

    stored = db.get(Invoice, invoice["id"])
    stored.token_expires_at = utcnow() - timedelta(days=1)
    db.commit()
    assert client.get(f"/api/public/invoices/{token}").status_code == 410


def test_list_and_export(client, master_data, approved_timesheet):
    invoice = _create_invoice(client, master_data).json()

    listing = client.get("/api/invoices", params={"status": "DRAFT"})
    assert listing.status_code == 200, listing.text
    assert listing.json()["total"] == 1
    assert listing.json()["items"][0]["client_name"] == "Sam Client"

    export = client.get("/api/invoices/export.csv")
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    lines = export.text.strip().splitlines()
    assert len(lines) == 2
    assert invoice["invoice_number"] in lines[1]


def test_invoice_pdf(client, master_data, approved_timesheet):
    invoice = _create_invoice(client, master_data).json()
    response = client.get(f"/api/invoices/{invoice['id']}/pdf")
    assert response.status_code == 200
    assert response.content.startswith(b"%PDF")


def test_batch_generate_from_timesheets(client, approved_timesheet):
    response = client.post("/api/timesheets/batch/generate-invoice", json={"ids": [approved_timesheet["id"]]})
    assert response.status_code == 200, response.text
    assert response.json()["invoices_created"] == 1

    response = client.post("/api/timesheets/batch/generate-invoice", json={"ids": [approved_timesheet["id"]]})
    assert response.status_code == 400
    assert "already invoiced" in response.json()["detail"]


def test_users_cannot_record_payments(client, master_data, approved_timesheet, make_user, auth):
    invoice = _create_invoice(client, master_data).json()
    auth.user = make_user("viewer@example.com")
    response = client.post(
        f"/api/invoices/{invoice['id']}/payments",
        json={"amount": "10.00", "payment_date": "2026-01-20"},
    )
    assert response.status_code == 403
