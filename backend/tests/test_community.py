from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from abaops.db.base import ensure_aware
from abaops.models.community import CommunityInvoice
from abaops.models.email_queue import EmailQueueItem
from abaops.models.enums import CommunityInvoiceStatus, EmailQueueContext, EmailQueueStatus
from abaops.services import community as community_service
from abaops.services.community import calculate_total, run_scheduled_sender
from abaops.services.email import EmailSendError


@pytest.fixture()
def community(client):
    response = client.post(
        "/api/community/clients",
        json={"first_name": "Casey", "last_name": "Family", "email": "casey@example.com"},
    )
    assert response.status_code == 201, response.text
    community_client = response.json()
    response = client.post("/api/community/classes", json={"name": "Social Skills Group", "rate_per_unit": "25.00"})
    assert response.status_code == 201, response.text
    return community_client, response.json()


def _create_invoice(client, community, units=4):
    community_client, community_class = community
    response = client.post(
        "/api/community/invoices",
        json={
            "client_id": community_client["id"],
            "class_id": community_class["id"],
            "units": units,
            "service_date": "2026-01-07",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_total_is_rate_times_units():
    assert calculate_total(Decimal("25.00"), 4) == Decimal("100.00")
    assert calculate_total(Decimal("12.345"), 1) == Decimal("12.35")


def test_client_full_name_and_listing(client, community):
    community_client, _ = community
    assert community_client["full_name"] == "Casey Family"
    response = client.get("/api/community/clients", params={"search": "casey"})
    assert response.status_code == 200, response.text
    assert [row["id"] for row in response.json()] == [community_client["id"]]


def test_invoice_snapshots_class_rate(client, community):
    invoice = _create_invoice(client, community)
    assert invoice["status"] == "DRAFT"
    assert Decimal(invoice["rate_per_unit"]) == Decimal("25.00")
    assert Decimal(invoice["total_amount"]) == Decimal("100.00")

    _, community_class = community
    client.patch(f"/api/community/classes/{community_class['id']}", json={"rate_per_unit": "30.00"})
    current = client.get(f"/api/community/invoices/{invoice['id']}").json()
    assert Decimal(current["rate_per_unit"]) == Decimal("25.00")

    response = client.patch(f"/api/community/invoices/{invoice['id']}", json={"units": 2})
    assert response.status_code == 200, response.text
    assert Decimal(response.json()["total_amount"]) == Decimal("50.00")


def test_approve_queues_invoice(client, db, community):
    invoice = _create_invoice(client, community)
    response = client.post(f"/api/community/invoices/{invoice['id']}/approve")
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "QUEUED"

    item = db.query(EmailQueueItem).filter(EmailQueueItem.context == EmailQueueContext.COMMUNITY).one()
    assert item.entity_id == invoice["id"]
    assert item.status == EmailQueueStatus.QUEUED

    response = client.post(f"/api/community/invoices/{invoice['id']}/approve")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    response = client.patch(f"/api/community/invoices/{invoice['id']}", json={"units": 1})
    assert response.status_code == 400


def test_reject_and_delete(client, community):
    invoice = _create_invoice(client, community)
    response = client.post(f"/api/community/invoices/{invoice['id']}/reject", json={"reason": "Wrong class"})
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "REJECTED"
    assert response.json()["rejection_reason"] == "Wrong class"

    assert client.delete(f"/api/community/invoices/{invoice['id']}").status_code == 204
    assert client.get(f"/api/community/invoices/{invoice['id']}").status_code == 404


def test_send_batch_emails_all_invoices_together(client, db, community, sent_emails):
    first = _create_invoice(client, community)
    second = _create_invoice(client, community, units=2)
    for invoice in (first, second):
        assert client.post(f"/api/community/invoices/{invoice['id']}/approve").status_code == 200

    response = client.post("/api/community/email-queue/send-batch", json={"recipients": [" Office@Example.com "]})
    assert response.status_code == 200, response.text
    assert response.json()["sent"] == 2

    assert len(sent_emails) == 1
    assert sent_emails[0]["to"] == ["office@example.com"]
    assert len(sent_emails[0]["attachments"]) == 2
    assert sent_emails[0]["attachments"][0].content.startswith(b"%PDF")
    db.expire_all()
    assert {row.status for row in db.query(CommunityInvoice).all()} == {CommunityInvoiceStatus.EMAILED}
    assert {row.recipient_email for row in db.query(EmailQueueItem).all()} == {"office@example.com"}


def test_send_batch_requires_recipients(client, community, sent_emails):
    invoice = _create_invoice(client, community)
    client.post(f"/api/community/invoices/{invoice['id']}/approve")

    for body in ({}, {"recipients": []}, {"recipients": ["  "]}):
        response = client.post("/api/community/email-queue/send-batch", json=body)
        assert response.status_code == 400, response.text
        assert response.json()["detail"]["code"] == "RECIPIENT_REQUIRED"
    assert sent_emails == []
    assert client.get(f"/api/community/invoices/{invoice['id']}").json()["status"] == "QUEUED"


def test_send_batch_skips_invoices_scheduled_for_later(client, db, community, sent_emails):
    now_invoice = _create_invoice(client, community)
    later_invoice = _create_invoice(client, community, units=1)
    client.post(f"/api/community/invoices/{now_invoice['id']}/approve")
    client.post(
        f"/api/community/invoices/{later_invoice['id']}/approve",
        json={"scheduled_send_at": "2099-01-01T12:00:00+00:00"},
    )

    response = client.post("/api/community/email-queue/send-batch", json={"recipients": ["office@example.com"]})
    assert response.status_code == 200, response.text
    assert response.json()["sent"] == 1
    assert len(sent_emails[0]["attachments"]) == 1
    db.expire_all()
    assert db.get(CommunityInvoice, now_invoice["id"]).status == CommunityInvoiceStatus.EMAILED
    assert db.get(CommunityInvoice, later_invoice["id"]).status == CommunityInvoiceStatus.QUEUED


def test_send_batch_can_schedule_in_billing_timezone(client, db, community, sent_emails):
    first = _create_invoice(client, community)
    second = _create_invoice(client, community, units=2)
    for invoice in (first, second):
        client.post(f"/api/community/invoices/{invoice['id']}/approve")

    response = client.post(
        "/api/community/email-queue/send-batch",
        json={"recipients": ["office@example.com", "owner@example.com"], "scheduled_send_at": "2030-07-01T09:30:00"},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["scheduled"] == 2
    assert body["sent"] == 0
    assert sent_emails == []

    due_at = datetime(2030, 7, 1, 13, 30, tzinfo=timezone.utc)
    db.expire_all()
    items = db.query(EmailQueueItem).filter(EmailQueueItem.context == EmailQueueContext.COMMUNITY).all()
    assert {ensure_aware(item.scheduled_send_at) for item in items} == {due_at}
    assert {item.status for item in items} == {EmailQueueStatus.QUEUED}

    assert run_scheduled_sender(db, now=due_at - timedelta(minutes=1)).sent == 0
    outcome = run_scheduled_sender(db, now=due_at + timedelta(minutes=1))
    db.commit()
    assert outcome.sent == 2
    assert len(sent_emails) == 1
    assert sent_emails[0]["to"] == ["office@example.com", "owner@example.com"]
    assert len(sent_emails[0]["attachments"]) == 2


def test_send_batch_rejects_schedule_in_the_past(client, community):
    invoice = _create_invoice(client, community)
    client.post(f"/api/community/invoices/{invoice['id']}/approve")
    response = client.post(
        "/api/community/email-queue/send-batch",
        json={"recipients": ["office@example.com"], "scheduled_send_at": "2020-01-01T09:00:00"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_SCHEDULE"


def test_failed_send_then_resend(client, db, community, monkeypatch):
    invoice = _create_invoice(client, community)
    client.post(f"/api/community/invoices/{invoice['id']}/approve")

    def failing_send_email(**kwargs):
        raise EmailSendError("Mailbox unavailable")

    monkeypatch.setattr(community_service, "send_email", failing_send_email)
    response = client.post("/api/community/email-queue/send-batch", json={"recipients": ["office@example.com"]})
    assert response.json()["failed"] == 1

    current = client.get(f"/api/community/invoices/{invoice['id']}").json()
    assert current["status"] == "FAILED"
    assert current["email_error"] == "Mailbox unavailable"

    queue = client.get("/api/community/email-queue").json()
    assert queue[0]["status"] == "FAILED"
    assert queue[0]["invoice"]["id"] == invoice["id"]

    response = client.post(f"/api/community/email-queue/{queue[0]['id']}/resend")
    assert response.status_code == 200, response.text
    assert client.get(f"/api/community/invoices/{invoice['id']}").json()["status"] == "QUEUED"


def test_unexpected_send_error_releases_community_items(client, db, community, monkeypatch):
    invoice = _create_invoice(client, community)
    client.post(f"/api/community/invoices/{invoice['id']}/approve")

    def broken_send_email(**kwargs):
        raise json.JSONDecodeError("x", "", 0)

    monkeypatch.setattr("abaops.services.community.send_email", broken_send_email)
    response = client.post("/api/community/email-queue/send-batch", json={"recipients": ["office@example.com"]})
    assert response.status_code == 200, response.text
    assert response.json()["success"] is False
    assert response.json()["failed"] == 1

    queue = client.get("/api/community/email-queue").json()
    assert queue[0]["status"] == "FAILED"
    response = client.post(f"/api/community/email-queue/{queue[0]['id']}/resend")
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "QUEUED"


def test_scheduled_approval_without_client_email_fails_item(client, db, community, sent_emails):
    community_client, _ = community
    client.patch(f"/api/community/clients/{community_client['id']}", json={"email": None})
    invoice = _create_invoice(client, community)
    due_at = datetime(2026, 1, 13, 15, 0, tzinfo=timezone.utc)
    client.post(f"/api/community/invoices/{invoice['id']}/approve", json={"scheduled_send_at": due_at.isoformat()})

    outcome = run_scheduled_sender(db, now=due_at + timedelta(minutes=1))
    db.commit()
    assert outcome.failed == 1
    assert sent_emails == []
    assert client.get(f"/api/community/invoices/{invoice['id']}").json()["status"] == "FAILED"


def test_scheduled_sender_only_sends_due_items(client, db, community, sent_emails):
    due_at = datetime(2026, 1, 13, 15, 0, tzinfo=timezone.utc)
    later = _create_invoice(client, community)
    due = _create_invoice(client, community, units=1)
    client.post(
        f"/api/community/invoices/{due['id']}/approve",
        json={"scheduled_send_at": due_at.isoformat()},
    )
    client.post(
        f"/api/community/invoices/{later['id']}/approve",
        json={"scheduled_send_at": (due_at + timedelta(days=1)).isoformat()},
    )

    outcome = run_scheduled_sender(db, now=due_at + timedelta(minutes=1))
    db.commit()
    assert outcome.sent == 1
    assert len(sent_emails) == 1
    db.expire_all()
    assert db.get(CommunityInvoice, due["id"]).status == CommunityInvoiceStatus.EMAILED
    assert db.get(CommunityInvoice, later["id"]).status == CommunityInvoiceStatus.QUEUED


def test_public_community_invoice(client, db, community):
    invoice = _create_invoice(client, community)
    client.post(f"/api/community/invoices/{invoice['id']}/approve")
    token = db.get(CommunityInvoice, invoice["id"]).view_token

    response = client.get(f"/api/public/community-invoices/{token}")
    assert response.status_code == 200, response.text
    assert response.json()["class_name"] == "Social Skills Group"

    response = client.get(f"/api/public/community-invoices/{token}/pdf")
    assert response.status_code == 200
    assert response.content.startswith(b"%PDF")
