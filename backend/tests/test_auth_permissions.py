from __future__ import annotations

import pytest

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.security import get_password_hash
from abaops.main import app
from abaops.models.audit import ActivityLog
from abaops.models.enums import Role


@pytest.fixture()
def token_client(client):
    """Client that authenticates through real bearer tokens."""
    app.dependency_overrides.pop(get_current_user, None)
    return client


def _login(client, email, password):
    return client.post("/api/auth/login", data={"username": email, "password": password})


def test_login_returns_token_and_permissions(token_client, make_user):
    make_user("therapist@example.com", hashed_password=get_password_hash("correct-horse"))

    response = _login(token_client, "Therapist@Example.com", "correct-horse")
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["user"]["email"] == "therapist@example.com"
    assert body["permissions"]["timesheets.create"]["create"] is True
    assert "invoices.create" not in body["permissions"]

    me = token_client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200, me.text
    assert me.json()["email"] == "therapist@example.com"


def test_wrong_password_is_logged(token_client, db, make_user):
    make_user("therapist@example.com", hashed_password=get_password_hash("correct-horse"))

    response = _login(token_client, "therapist@example.com", "wrong")
    assert response.status_code == 401
    assert response.json()["detail"] == "Incorrect email or password"
    assert db.query(ActivityLog).filter(ActivityLog.type == "LOGIN_FAILED").count() == 1


def test_inactive_user_cannot_login(token_client, make_user):
    make_user("gone@example.com", hashed_password=get_password_hash("correct-horse"), is_active=False)
    assert _login(token_client, "gone@example.com", "correct-horse").status_code == 401


def test_requests_without_token_are_rejected(token_client):
    assert token_client.get("/api/auth/me").status_code == 401
    response = token_client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401


def test_change_password(client, db, auth, make_user):
    auth.user = make_user("therapist@example.com", hashed_password=get_password_hash("correct-horse"))

    response = client.post(
        "/api/auth/change-password",
        json={"current_password": "wrong-horse", "new_password": "battery-staple"},
    )
    assert response.status_code == 400

    response = client.post(
        "/api/auth/change-password",
        json={"current_password": "correct-horse", "new_password": "battery-staple"},
    )
    assert response.status_code == 204


def test_admin_lacks_delete_keys(admin_user):
    permissions = rbac.resolve_permissions(admin_user)
    assert "users.delete" not in permissions
    assert "roles.delete" not in permissions
    assert permissions["invoices.payments"]["approve"] is True


def test_user_flags_follow_key_suffix(make_user):
    permissions = rbac.resolve_permissions(make_user("therapist@example.com"))
    assert set(permissions) == rbac.USER_KEYS
    assert permissions["timesheets.view"] == {
        "view": True,
        "create": False,
        "update": False,
        "delete": False,
        "approve": False,
        "export": False,
    }
    assert permissions["timesheets.submit"]["update"] is True
    assert permissions["timesheets.create"]["create"] is True


def test_permissions_endpoint_shape(client, auth, make_user):
    auth.user = make_user("therapist@example.com")
    response = client.get("/api/auth/permissions")
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["role"] == "USER"
    assert body["dashboard"]["timesheets"] is True
    assert body["dashboard"]["payroll"] is False


def test_custom_role_grants_only_listed_permissions(client, auth, make_user):
    response = client.post(
        "/api/roles",
        json={
            "name": "Front Desk",
            "permissions": [{"permission_key": "providers.view", "can_view": True}],
        },
    )
    assert response.status_code == 201, response.text
    role = response.json()

    auth.user = make_user("desk@example.com", role=Role.CUSTOM, custom_role_id=role["id"])
    assert client.get("/api/providers").status_code == 200
    assert client.post("/api/providers", json={"name": "New Provider"}).status_code == 403

    assert client.get("/api/auth/permissions").json()["permissions"] == {
        "providers.view": {
            "view": True,
            "create": False,
            "update": False,
            "delete": False,
            "approve": False,
            "export": False,
        }
    }


def test_inactive_custom_role_has_no_permissions(client, db, auth, admin_user, make_user):
    role = client.post(
        "/api/roles",
        json={"name": "Auditor", "permissions": [{"permission_key": "reports.view", "can_view": True}]},
    ).json()
    custom_user = make_user("auditor@example.com", role=Role.CUSTOM, custom_role_id=role["id"])

    response = client.patch(f"/api/roles/{role['id']}", json={"active": False})
    assert response.status_code == 200, response.text
    db.refresh(custom_user)
    assert rbac.resolve_permissions(custom_user) == {}


def test_unknown_permission_key_is_rejected(client):
    response = client.post(
        "/api/roles",
        json={"name": "Broken", "permissions": [{"permission_key": "nope.view", "can_view": True}]},
    )
    assert response.status_code == 422


def test_role_in_use_cannot_be_deleted(client, auth, make_user):
    role = client.post("/api/roles", json={"name": "Billing"}).json()
    make_user("billing@example.com", role=Role.CUSTOM, custom_role_id=role["id"])

    auth.user = make_user("root@example.com", role=Role.SUPER_ADMIN)
    response = client.delete(f"/api/roles/{role['id']}")
    assert response.status_code == 400
    assert "assigned to 1 user(s)" in response.json()["detail"]


def test_user_management(client, auth, make_user):
    payload = {"email": "New.Tech@Example.com", "password": "long-enough", "full_name": "New Tech"}
    response = client.post("/api/users", json=payload)
    assert response.status_code == 201, response.text
    created = response.json()
    assert created["email"] == "new.tech@example.com"

    assert client.post("/api/users", json=payload).status_code == 400

    response = client.post(f"/api/users/{created['id']}/deactivate")
    assert response.status_code == 200, response.text
    assert response.json()["is_active"] is False

    response = client.post(f"/api/users/{auth.user.id}/deactivate")
    assert response.status_code == 400

    # Admins cannot hard-delete users; super admins can.
    assert client.delete(f"/api/users/{created['id']}").status_code == 403
    auth.user = make_user("root@example.com", role=Role.SUPER_ADMIN)
    assert client.delete(f"/api/users/{created['id']}").status_code == 204
    assert client.get(f"/api/users/{created['id']}").status_code == 404


def test_only_super_admin_grants_super_admin(client):
    response = client.post(
        "/api/users",
        json={"email": "boss@example.com", "password": "long-enough", "role": "SUPER_ADMIN"},
    )
    assert response.status_code == 403


def test_users_cannot_manage_users(client, auth, make_user):
    auth.user = make_user("therapist@example.com")
    assert client.get("/api/users").status_code == 403
