from __future__ import annotations

from decimal import Decimal


def _invoice(client, master_data):
    response = client.post(
        "/api/invoices",
        json={"client_id": master_data.client.id, "start_date": "2026-01-05", "end_date": "2026-01-09"},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_unbilled_timesheet(client, approved_timesheet):
    response = client.get("/api/search", params={"q": "t-1001"})
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["kind"] == "timesheet"
    assert body["timesheet"]["client"] == "Sam Client"
    assert body["invoice"] is None
    assert body["message"] == "Timesheet is unbilled"


def test_invoiced_timesheet_links_its_invoice(client, master_data, approved_timesheet):
    invoice = _invoice(client, master_data)
    body = client.get("/api/search", params={"q": "T-1001"}).json()
    assert body["message"] == "Timesheet is invoiced"
    assert body["invoice"]["invoice_number"] == invoice["invoice_number"]
    assert Decimal(body["invoice"]["total_amount"]) == Decimal("72.00")


def test_invoice_lists_its_timesheets(client, master_data, approved_timesheet):
    invoice = _invoice(client, master_data)
    body = client.get("/api/search", params={"q": invoice["invoice_number"]}).json()
    assert body["kind"] == "invoice"
    assert [row["timesheet_number"] for row in body["timesheets"]] == ["T-1001"]
    assert body["message"] == "Invoice contains 1 timesheet(s)"


def test_not_found_is_not_an_error(client):
    body = client.get("/api/search", params={"q": "BT-4242"}).json()
    assert body["timesheet"] is None
    assert body["message"] == "Timesheet not found"

    body = client.get("/api/search", params={"q": "INV-2026-99999"}).json()
    assert body["invoice"] is None
    assert body["timesheets"] == []


def test_rejects_empty_and_unknown_formats(client):
    assert client.get("/api/search", params={"q": "  "}).json()["detail"] == "Search query is required"
    response = client.get("/api/search", params={"q": "Sam Client"})
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Invalid search format")


def test_users_only_find_their_own_timesheets(client, auth, make_user, approved_timesheet):
    auth.user = make_user("therapist@example.com")
    body = client.get("/api/search", params={"q": "T-1001"}).json()
    assert body["timesheet"] is None
