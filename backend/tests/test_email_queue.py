from __future__ import annotations

import json

from abaops.core.settings import settings
from abaops.models.email_queue import EmailQueueItem
from abaops.models.enums import EmailQueueStatus, NotificationType, TimesheetStatus
from abaops.models.notification import Notification
from abaops.models.timesheet import Timesheet
from abaops.services.email import EmailSendError


def _queue_item(db, timesheet_id):
    db.expire_all()
    return db.query(EmailQueueItem).filter(EmailQueueItem.entity_id == timesheet_id).one()


def test_list_shows_queued_timesheets(client, approved_timesheet):
    response = client.get("/api/email-queue")
    assert response.status_code == 200, response.text
    rows = response.json()
    assert len(rows) == 1
    assert rows[0]["status"] == "QUEUED"
    assert rows[0]["timesheet"]["timesheet_number"] == approved_timesheet["timesheet_number"]


def test_send_batch_sends_one_email_for_all_items(client, db, approved_timesheet, sent_emails):
    response = client.post("/api/email-queue/send-batch")
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["sent"] == 1
    assert body["message"] == "Sent 1 timesheet(s) in one email"
    assert body["batch_id"].startswith("BATCH-")

    assert len(sent_emails) == 1
    assert sent_emails[0]["to"] == ["billing@example.com"]
    assert sent_emails[0]["attachments"][0].filename == f"timesheet-{approved_timesheet['timesheet_number']}.pdf"

    item = _queue_item(db, approved_timesheet["id"])
    assert item.status == EmailQueueStatus.SENT
    assert item.attempts == 1
    timesheet = db.get(Timesheet, approved_timesheet["id"])
    assert timesheet.status == TimesheetStatus.EMAILED
    assert timesheet.emailed_at is not None


def test_send_batch_with_empty_queue(client):
    response = client.post("/api/email-queue/send-batch")
    assert response.status_code == 200, response.text
    assert response.json()["sent"] == 0
    assert response.json()["message"] == "No queued emails to send"


def test_failed_send_marks_items_and_notifies(client, db, approved_timesheet, monkeypatch, admin_user):
    def failing_send_email(**kwargs):
        raise EmailSendError("Provider rejected the message")

    monkeypatch.setattr("abaops.services.email_queue.send_email", failing_send_email)
    response = client.post("/api/email-queue/send-batch")
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is False
    assert body["failed"] == 1

    item = _queue_item(db, approved_timesheet["id"])
    assert item.status == EmailQueueStatus.FAILED
    assert item.attempts == 1
    assert item.last_error == "Provider rejected the message"
    assert db.get(Timesheet, approved_timesheet["id"]).status == TimesheetStatus.APPROVED
    assert (
        db.query(Notification)
        .filter(Notification.user_id == admin_user.id, Notification.type == NotificationType.EMAIL_BATCH_FAILED)
        .count()
        == 1
    )

    response = client.post(f"/api/email-queue/{item.id}/resend")
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "QUEUED"
    assert response.json()["last_error"] is None


def test_resend_requires_failed_item(client, db, approved_timesheet):
    item = _queue_item(db, approved_timesheet["id"])
    response = client.post(f"/api/email-queue/{item.id}/resend")
    assert response.status_code == 400


def test_send_selected_rejects_unknown_ids(client, approved_timesheet):
    response = client.post("/api/email-queue/send-selected", json={"ids": [9999]})
    assert response.status_code == 400


def test_send_selected(client, db, approved_timesheet, sent_emails):
    item = _queue_item(db, approved_timesheet["id"])
    response = client.post("/api/email-queue/send-selected", json={"ids": [item.id]})
    assert response.status_code == 200, response.text
    assert response.json()["sent"] == 1
    assert len(sent_emails) == 1


def test_delete_and_bulk_delete(client, db, approved_timesheet):
    item = _queue_item(db, approved_timesheet["id"])
    response = client.post("/api/email-queue/bulk-delete", json={"ids": [item.id]})
    assert response.status_code == 200, response.text
    assert response.json()["deleted"] == 1
    assert client.get("/api/email-queue").json() == []
    assert client.delete(f"/api/email-queue/{item.id}").status_code == 404


def test_unexpected_send_error_does_not_strand_items(client, db, approved_timesheet, monkeypatch):
    def broken_send_email(**kwargs):
        raise json.JSONDecodeError("x", "", 0)

    monkeypatch.setattr("abaops.services.email_queue.send_email", broken_send_email)
    response = client.post("/api/email-queue/send-batch")
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is False
    assert body["failed"] == 1

    item = _queue_item(db, approved_timesheet["id"])
    assert item.status == EmailQueueStatus.FAILED
    assert item.last_error.startswith("Unexpected error while sending")
    assert db.get(Timesheet, approved_timesheet["id"]).status == TimesheetStatus.APPROVED

    response = client.post(f"/api/email-queue/{item.id}/resend")
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "QUEUED"


def test_production_refuses_queue_deletes(client, db, approved_timesheet, monkeypatch):
    monkeypatch.setattr(settings, "environment", "production")
    monkeypatch.setattr(settings, "allow_destructive_actions", False)
    item = _queue_item(db, approved_timesheet["id"])

    response = client.post("/api/email-queue/bulk-delete", json={"ids": [item.id]})
    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["code"] == "DESTRUCTIVE_ACTION_DISABLED"
    assert detail["action"] == "bulk_delete_email_queue"
    assert "ALLOW_DESTRUCTIVE_ACTIONS" in detail["message"]
    assert _queue_item(db, item.entity_id).deleted_at is None

    monkeypatch.setattr(settings, "allow_destructive_actions", True)
    assert client.post("/api/email-queue/bulk-delete", json={"ids": [item.id]}).status_code == 200
