from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from abaops.core.deps import get_current_user  # noqa: E402
from abaops.core.settings import settings  # noqa: E402
from abaops.db.base import Base  # noqa: E402
from abaops.db.session import enable_sqlite_savepoints, get_db  # noqa: E402
from abaops.main import app  # noqa: E402
from abaops.models.enums import Role  # noqa: E402
from abaops.models.master import BCBA, Client, Insurance, Provider  # noqa: E402
from abaops.models.user import User  # noqa: E402

EMAIL_TARGETS = (
    "abaops.services.email_queue.send_email",
    "abaops.services.community.send_email",
    "abaops.services.notifications.send_email",
)


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "uploads_dir", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "timesheet_batch_recipients", ["billing@example.com"])
    monkeypatch.setattr(settings, "admin_notification_emails", [])
    monkeypatch.setattr(settings, "community_fallback_email", None)
    monkeypatch.setattr(settings, "billing_timezone", "America/New_York")


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Every outbound email, captured instead of sent."""
    sent = []

    def fake_send_email(*, to_address, subject, html, text=None, attachments=None):
        sent.append(
            {
                "to": to_address,
                "subject": subject,
                "html": html,
                "text": text,
                "attachments": list(attachments or []),
            }
        )

    for target in EMAIL_TARGETS:
        monkeypatch.setattr(target, fake_send_email)
    return sent


@pytest.fixture()
def admin_user(db):
    user = User(
        email="admin@example.com",
        hashed_password="not-used",
        role=Role.ADMIN,
        full_name="Admin",
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def make_user(db):
    def build(email: str, role: Role = Role.USER, **kwargs) -> User:
        user = User(
            email=email,
            hashed_password=kwargs.pop("hashed_password", "not-used"),
            role=role,
            full_name=kwargs.pop("full_name", email.split("@")[0].title()),
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db.add(user)
        db.commit()
        return user

    return build


@pytest.fixture()
def master_data(db):
    insurance = Insurance(name="Medicaid", rate_per_unit=Decimal("12.00"), active=True)
    db.add(insurance)
    db.flush()
    provider = Provider(name="Jane Provider", email="jane@example.com", active=True)
    client = Client(name="Sam Client", email="family@example.com", insurance_id=insurance.id, active=True)
    bcba = BCBA(name="Alex BCBA", email="alex@example.com")
    db.add_all([provider, client, bcba])
    db.commit()
    return SimpleNamespace(insurance=insurance, provider=provider, client=client, bcba=bcba)


@pytest.fixture()
def auth(admin_user):
    """Mutable holder for the user the API sees as logged in."""
    return SimpleNamespace(user=admin_user)


@pytest.fixture()
def client(db, auth):
    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_current_user():
        return auth.user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    client_instance = TestClient(app)
    try:
        yield client_instance
    finally:
        client_instance.close()
        app.dependency_overrides.clear()


@pytest.fixture()
def timesheet_payload(master_data):
    """Regular Monday timesheet: 90 minutes of DR and 30 minutes of SV."""

    def build(**overrides) -> dict:
        payload = {
            "is_bcba": False,
            "provider_id": master_data.provider.id,
            "client_id": master_data.client.id,
            "bcba_id": master_data.bcba.id,
            "insurance_id": master_data.insurance.id,
            "start_date": "2026-01-05",
            "end_date": "2026-01-09",
            "entries": [
                {"date": "2026-01-05", "start_time": "09:00", "end_time": "10:30", "minutes": 90, "notes": "DR"},
                {"date": "2026-01-05", "start_time": "10:30", "end_time": "11:00", "minutes": 30, "notes": "SV"},
            ],
        }
        payload.update(overrides)
        return payload

    return build


@pytest.fixture()
def approved_timesheet(client, timesheet_payload):
    response = client.post("/api/timesheets", json=timesheet_payload())
    assert response.status_code == 201, response.text
    timesheet_id = response.json()["id"]
    response = client.post(f"/api/timesheets/{timesheet_id}/approve")
    assert response.status_code == 200, response.text
    return response.json()["data"]
