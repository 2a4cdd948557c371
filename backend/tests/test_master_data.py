from __future__ import annotations

from decimal import Decimal


def test_insurance_rate_changes_are_versioned(client):
    response = client.post("/api/insurance", json={"name": "Aetna", "rate_per_unit": "15.00"})
    assert response.status_code == 201, response.text
    insurance = response.json()
    assert len(insurance["rate_history"]) == 1

    response = client.patch(f"/api/insurance/{insurance['id']}", json={"active": True})
    assert response.status_code == 200, response.text
    assert len(response.json()["rate_history"]) == 1

    response = client.patch(f"/api/insurance/{insurance['id']}", json={"rate_per_unit": "17.50"})
    assert response.status_code == 200, response.text
    history = response.json()["rate_history"]
    assert [Decimal(row["rate_per_unit"]) for row in history] == [Decimal("15.00"), Decimal("17.50")]
    assert history[0]["effective_to"] is not None
    assert history[1]["effective_to"] is None


def test_insurance_rejects_negative_rate_and_duplicates(client, master_data):
    assert client.post("/api/insurance", json={"name": "Cigna", "rate_per_unit": "-1"}).status_code == 422
    response = client.post("/api/insurance", json={"name": "medicaid", "rate_per_unit": "10.00"})
    assert response.status_code == 400


def test_insurance_writes_are_admin_only(client, auth, make_user):
    auth.user = make_user("therapist@example.com")
    assert client.post("/api/insurance", json={"name": "Aetna", "rate_per_unit": "15.00"}).status_code == 403


def test_client_requires_known_insurance(client, master_data):
    response = client.post("/api/clients", json={"name": "Pat Client", "insurance_id": 9999})
    assert response.status_code == 400
    assert response.json()["detail"] == "Insurance not found"

    response = client.post("/api/clients", json={"name": "Pat Client", "insurance_id": master_data.insurance.id})
    assert response.status_code == 201, response.text
    assert response.json()["insurance_name"] == "Medicaid"


def test_client_search_and_soft_delete(client, master_data):
    response = client.get("/api/clients", params={"search": "sam"})
    assert [row["name"] for row in response.json()] == ["Sam Client"]

    assert client.delete(f"/api/clients/{master_data.client.id}").status_code == 204
    assert client.get("/api/clients").json() == []
    assert client.get(f"/api/clients/{master_data.client.id}").status_code == 404


def test_provider_csv_import(client, master_data):
    content = (
        "Name,Email,Phone\n"
        "Morgan Provider,morgan@example.com,555-0100\n"
        "Jane Provider,jane@example.com,\n"
        ",nobody@example.com,\n"
        "Bad Email,not-an-email,\n"
    ).encode("utf-8")
    response = client.post("/api/providers/import", files={"file": ("providers.csv", content, "text/csv")})
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["created"] == 1
    assert body["skipped"] == 3
    assert [error["row"] for error in body["errors"]] == [3, 4, 5]


def test_client_csv_import_matches_insurance_by_name(client, master_data):
    content = (
        "name,email,phone,insurance\n"
        "Riley Client,riley@example.com,,medicaid\n"
        "Lee Client,,,Unknown Plan\n"
    ).encode("utf-8")
    response = client.post("/api/clients/import", files={"file": ("clients.csv", content, "text/csv")})
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["created"] == 1
    assert body["errors"] == [{"row": 3, "error": "Insurance 'Unknown Plan' not found"}]


def test_bcba_insurance_duplicate_names(client):
    payload = {"name": "BCBA Medicaid", "rate_per_unit": "20.00"}
    response = client.post("/api/bcba-insurance", json=payload)
    assert response.status_code == 201, response.text
    assert response.json()["unit_minutes"] == 15
    assert client.post("/api/bcba-insurance", json=payload).status_code == 400
