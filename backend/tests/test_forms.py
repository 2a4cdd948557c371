from __future__ import annotations

from abaops.models.audit import AuditLog
from abaops.models.forms import FormDocument


def _visit_payload(master_data, **overrides) -> dict:
    payload = {
        "client_id": master_data.client.id,
        "provider_id": master_data.provider.id,
        "month": 3,
        "year": 2026,
        "rows": [
            {"date": "2026-03-02", "parent_signature": "P. Parent"},
            {"date": "2026-03-09", "parent_signature": "P. Parent"},
        ],
    }
    payload.update(overrides)
    return payload


def test_visit_attestation_fills_row_provider(client, master_data):
    response = client.post("/api/forms/visit-attestation", json=_visit_payload(master_data))
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["form_type"] == "VISIT_ATTESTATION"
    assert body["client_name"] == "Sam Client"
    assert body["provider_name"] == "Jane Provider"
    assert [row["provider_id"] for row in body["rows"]] == [master_data.provider.id] * 2


def test_saving_again_replaces_the_live_form(client, db, master_data):
    first = client.post("/api/forms/visit-attestation", json=_visit_payload(master_data)).json()
    payload = _visit_payload(master_data, rows=[{"date": "2026-03-16", "parent_signature": "P. Parent"}])
    second = client.post("/api/forms/visit-attestation", json=payload).json()

    assert second["id"] != first["id"]
    listed = client.get("/api/forms", params={"type": "VISIT_ATTESTATION"}).json()
    assert [row["id"] for row in listed] == [second["id"]]
    assert db.get(FormDocument, first["id"]).deleted_at is not None

    created = db.query(AuditLog).filter(AuditLog.entity_type == "FormDocument", AuditLog.entity_id == str(second["id"])).one()
    assert created.metadata_json["replaced_form_id"] == first["id"]


def test_lookup_returns_form_or_null(client, master_data):
    client.post("/api/forms/visit-attestation", json=_visit_payload(master_data))
    params = {"form_type": "VISIT_ATTESTATION", "client_id": master_data.client.id, "month": 3, "year": 2026}
    response = client.get("/api/forms/lookup", params=params)
    assert response.status_code == 200, response.text
    assert len(response.json()["rows"]) == 2

    response = client.get("/api/forms/lookup", params={**params, "month": 4})
    assert response.status_code == 200
    assert response.json() is None


def test_rows_must_fall_in_the_form_month(client, master_data):
    payload = _visit_payload(master_data, rows=[{"date": "2026-04-01"}])
    response = client.post("/api/forms/visit-attestation", json=payload)
    assert response.status_code == 400
    assert "outside 3/2026" in response.json()["detail"]


def test_visit_rows_need_a_provider(client, master_data):
    payload = _visit_payload(master_data, provider_id=None)
    response = client.post("/api/forms/visit-attestation", json=payload)
    assert response.status_code == 400
    assert response.json()["detail"] == "Each visit row needs a provider"

    payload = _visit_payload(master_data, provider_id=9999)
    assert client.post("/api/forms/visit-attestation", json=payload).status_code == 400


def test_parent_abc_data_copies_behavior_and_checks_times(client, master_data):
    payload = {
        "client_id": master_data.client.id,
        "month": 5,
        "year": 2026,
        "behavior": "Elopement",
        "rows": [
            {
                "date": "2026-05-04",
                "start_time": "09:00",
                "end_time": "09:15",
                "antecedent": "Transition",
                "consequences": "Redirected",
            }
        ],
    }
    response = client.post("/api/forms/parent-abc-data", json=payload)
    assert response.status_code == 201, response.text
    assert response.json()["rows"][0]["behavior"] == "Elopement"

    payload["rows"][0]["start_time"] = "9am"
    assert client.post("/api/forms/parent-abc-data", json=payload).status_code == 422


def test_update_moving_onto_another_month_replaces_that_copy(client, db, master_data):
    base = {"client_id": master_data.client.id, "year": 2026}
    march = client.post(
        "/api/forms/parent-training-sign-in",
        json={**base, "month": 3, "rows": [{"service_date": "2026-03-05", "parent_name": "Pat"}]},
    ).json()
    april = client.post(
        "/api/forms/parent-training-sign-in",
        json={**base, "month": 4, "rows": [{"service_date": "2026-04-02", "parent_name": "Pat"}]},
    ).json()

    response = client.put(
        f"/api/forms/parent-training-sign-in/{march['id']}",
        json={**base, "month": 4, "rows": [{"service_date": "2026-04-09", "parent_name": "Pat"}]},
    )
    assert response.status_code == 200, response.text
    assert response.json()["month"] == 4
    assert db.get(FormDocument, april["id"]).deleted_at is not None

    # Wrong kind in the path.
    assert client.put(f"/api/forms/visit-attestation/{march['id']}", json=_visit_payload(master_data)).status_code == 404


def test_delete_form(client, master_data):
    form = client.post("/api/forms/visit-attestation", json=_visit_payload(master_data)).json()
    assert client.delete(f"/api/forms/{form['id']}").status_code == 204
    assert client.get(f"/api/forms/{form['id']}").status_code == 404


def test_forms_require_permission(client, auth, make_user, master_data):
    auth.user = make_user("therapist@example.com")
    assert client.get("/api/forms").status_code == 403
    assert client.post("/api/forms/visit-attestation", json=_visit_payload(master_data)).status_code == 403
