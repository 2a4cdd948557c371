from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session, selectinload

from abaops.core.settings import settings
from abaops.db.base import utcnow
from abaops.models.enums import (
    AuditAction,
    EmailQueueContext,
    EmailQueueEntityType,
    EmailQueueStatus,
    NotificationType,
    TimesheetStatus,
)
from abaops.models.email_queue import EmailQueueItem
from abaops.models.timesheet import Timesheet
from abaops.models.user import User
from abaops.services.activity import log_audit
from abaops.services.email import EmailAttachment, EmailSendError, send_email
from abaops.services.notifications import notify_admins
from abaops.services.pdf import timesheet_pdf
from abaops.services.timesheets import audit_entity_type


logger = logging.getLogger(__name__)

TIMESHEET_ENTITY_TYPES = (EmailQueueEntityType.REGULAR, EmailQueueEntityType.BCBA)
SENDABLE_STATUSES = (EmailQueueStatus.QUEUED, EmailQueueStatus.FAILED)


class EmailQueueError(ValueError):
    pass


@dataclass
class BatchOutcome:
    success: bool
    sent: int = 0
    failed: int = 0
    batch_id: Optional[str] = None
    message: str = ""
    errors: List[str] = field(default_factory=list)
    scheduled: int = 0
    scheduled_send_at: Optional[datetime] = None


def generate_batch_id() -> str:
    return f"BATCH-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def list_items(
    db: Session,
    *,
    context: EmailQueueContext = EmailQueueContext.MAIN,
    status: Optional[EmailQueueStatus] = None,
) -> List[EmailQueueItem]:
    query = db.query(EmailQueueItem).filter(EmailQueueItem.context == context, EmailQueueItem.not_deleted())
    if status is not None:
        query = query.filter(EmailQueueItem.status == status)
    return query.order_by(EmailQueueItem.queued_at.desc(), EmailQueueItem.id.desc()).all()


def timesheets_for_items(db: Session, items: Sequence[EmailQueueItem]) -> Dict[int, Timesheet]:
    ids = [item.entity_id for item in items if item.entity_type in TIMESHEET_ENTITY_TYPES]
    if not ids:
        return {}
    timesheets = (
        db.query(Timesheet)
        .options(
            selectinload(Timesheet.entries),
            selectinload(Timesheet.provider),
            selectinload(Timesheet.client),
            selectinload(Timesheet.bcba),
        )
        .filter(Timesheet.id.in_(ids))
        .all()
    )
    return {timesheet.id: timesheet for timesheet in timesheets}


def get_item(db: Session, item_id: int, *, context: Optional[EmailQueueContext] = None) -> Optional[EmailQueueItem]:
    query = db.query(EmailQueueItem).filter(EmailQueueItem.id == item_id, EmailQueueItem.not_deleted())
    if context is not None:
        query = query.filter(EmailQueueItem.context == context)
    return query.first()


def lock_items(db: Session, items: Sequence[EmailQueueItem], batch_id: str) -> None:
    """Move items to SENDING and commit so a concurrent batch skips them."""
    for item in items:
        item.status = EmailQueueStatus.SENDING
        item.batch_id = batch_id
        item.last_error = None
        item.error_message = None
        db.add(item)
    db.commit()


def mark_failed(db: Session, item: EmailQueueItem, error: str) -> None:
    item.status = EmailQueueStatus.FAILED
    item.attempts += 1
    item.last_error = error
    item.error_message = error
    db.add(item)


def release_sending_items(db: Session, items: Sequence[EmailQueueItem], error: str) -> int:
    """Fail whatever a crashed batch left in SENDING. Returns how many items were released."""
    db.rollback()
    released = 0
    for item in items:
        if item.status == EmailQueueStatus.SENDING:
            mark_failed(db, item, error)
            released += 1
    db.commit()
    return released


def crashed_batch_outcome(db: Session, items: Sequence[EmailQueueItem], batch_id: str, exc: Exception) -> BatchOutcome:
    logger.exception("Batch %s crashed after locking %s item(s)", batch_id, len(items))
    error = f"Unexpected error while sending: {exc}"
    failed = release_sending_items(db, items, error)
    return BatchOutcome(success=False, failed=failed, batch_id=batch_id, message=error, errors=[error])


def _batch_html(timesheets: Sequence[Timesheet]) -> str:
    rows = "".join(
        f"<tr><td>{ts.timesheet_number}</td><td>{ts.client_name}</td><td>{ts.provider_name}</td>"
        f"<td>{ts.start_date.isoformat()} - {ts.end_date.isoformat()}</td></tr>"
        for ts in timesheets
    )
    return (
        f"<p>{len(timesheets)} approved timesheet(s) attached.</p>"
        "<table><tr><th>#</th><th>Client</th><th>Provider</th><th>Period</th></tr>"
        f"{rows}</table>"
    )


def _send_timesheet_items(db: Session, items: List[EmailQueueItem], *, user: Optional[User]) -> BatchOutcome:
    batch_id = generate_batch_id()
    lock_items(db, items, batch_id)
    try:
        return _deliver_timesheet_items(db, items, batch_id=batch_id, user=user)
    except Exception as exc:
        return crashed_batch_outcome(db, items, batch_id, exc)


def _deliver_timesheet_items(db: Session, items: List[EmailQueueItem], *, batch_id: str, user: Optional[User]) -> BatchOutcome:
    user_id = user.id if user else None

    timesheets = timesheets_for_items(db, items)
    attachments: List[EmailAttachment] = []
    included: List[EmailQueueItem] = []
    errors: List[str] = []
    for item in items:
        timesheet = timesheets.get(item.entity_id)
        if timesheet is None or timesheet.deleted_at is not None:
            mark_failed(db, item, "Timesheet not found")
            errors.append(f"Queue item {item.id}: timesheet not found")
            continue
        try:
            content = timesheet_pdf(timesheet)
        except (ValueError, TypeError, AttributeError) as exc:
            logger.exception("PDF generation failed for timesheet %s", timesheet.id)
            mark_failed(db, item, f"PDF generation failed: {exc}")
            errors.append(f"{timesheet.timesheet_number}: PDF generation failed")
            continue
        attachments.append(EmailAttachment(filename=f"timesheet-{timesheet.timesheet_number}.pdf", content=content))
        included.append(item)

    if not included:
        db.flush()
        return BatchOutcome(
            success=False,
            failed=len(items),
            batch_id=batch_id,
            message="No valid timesheets to send",
            errors=errors,
        )

    sent_timesheets = [timesheets[item.entity_id] for item in included]
    recipients = settings.timesheet_batch_recipients
    try:
        send_email(
            to_address=recipients,
            subject=f"Approved timesheets ({len(sent_timesheets)})",
            html=_batch_html(sent_timesheets),
            text=f"{len(sent_timesheets)} approved timesheet(s) attached.",
            attachments=attachments,
        )
    except EmailSendError as exc:
        logger.error("Timesheet batch %s failed: %s", batch_id, exc)
        for item in included:
            mark_failed(db, item, str(exc))
            timesheet = timesheets[item.entity_id]
            log_audit(
                db,
                action=AuditAction.EMAIL_FAILED,
                entity_type=audit_entity_type(timesheet),
                entity_id=timesheet.id,
                user_id=user_id,
                metadata={"batch_id": batch_id, "error": str(exc)},
            )
        notify_admins(
            db,
            notif_type=NotificationType.EMAIL_BATCH_FAILED,
            title="Timesheet email batch failed",
            message=f"Batch {batch_id} failed: {exc}",
            payload={"batch_id": batch_id},
        )
        db.flush()
        return BatchOutcome(
            success=False,
            failed=len(items),
            batch_id=batch_id,
            message=f"Failed to send email: {exc}",
            errors=errors + [str(exc)],
        )

    now = utcnow()
    for item in included:
        item.status = EmailQueueStatus.SENT
        item.sent_at = now
        item.attempts += 1
        item.recipient_email = ", ".join(recipients)
        db.add(item)
        timesheet = timesheets[item.entity_id]
        timesheet.status = TimesheetStatus.EMAILED
        timesheet.emailed_at = now
        db.add(timesheet)
        log_audit(
            db,
            action=AuditAction.EMAIL_SENT,
            entity_type=audit_entity_type(timesheet),
            entity_id=timesheet.id,
            user_id=user_id,
            metadata={"batch_id": batch_id, "recipients": recipients},
        )
    db.flush()
    failed = len(items) - len(included)
    logger.info("Timesheet batch %s sent: sent=%s failed=%s", batch_id, len(included), failed)
    return BatchOutcome(
        success=True,
        sent=len(included),
        failed=failed,
        batch_id=batch_id,
        message=f"Sent {len(included)} timesheet(s) in one email",
        errors=errors,
    )


def send_batch(db: Session, *, user: Optional[User]) -> BatchOutcome:
    """Send every queued timesheet as attachments of a single email."""
    items = (
        db.query(EmailQueueItem)
        .filter(
            EmailQueueItem.context == EmailQueueContext.MAIN,
            EmailQueueItem.status == EmailQueueStatus.QUEUED,
            EmailQueueItem.not_deleted(),
        )
        .order_by(EmailQueueItem.queued_at.asc(), EmailQueueItem.id.asc())
        .all()
    )
    if not items:
        return BatchOutcome(success=True, message="No queued emails to send")
    return _send_timesheet_items(db, items, user=user)


def send_selected(db: Session, *, item_ids: Sequence[int], user: Optional[User]) -> BatchOutcome:
    items = (
        db.query(EmailQueueItem)
        .filter(
            EmailQueueItem.id.in_(list(item_ids)),
            EmailQueueItem.context == EmailQueueContext.MAIN,
            EmailQueueItem.not_deleted(),
        )
        .order_by(EmailQueueItem.id.asc())
        .all()
    )
    if len(items) != len(set(item_ids)):
        raise EmailQueueError("Some queue items were not found")
    not_sendable = [item.id for item in items if item.status not in SENDABLE_STATUSES]
    if not_sendable:
        raise EmailQueueError(f"Only queued or failed items can be sent: {not_sendable}")
    return _send_timesheet_items(db, items, user=user)


def bulk_delete(db: Session, *, item_ids: Sequence[int], context: EmailQueueContext, user: User) -> int:
    items = (
        db.query(EmailQueueItem)
        .filter(
            EmailQueueItem.id.in_(list(item_ids)),
            EmailQueueItem.context == context,
            EmailQueueItem.not_deleted(),
        )
        .all()
    )
    for item in items:
        delete_item(db, item=item, user=user)
    return len(items)


def delete_item(db: Session, *, item: EmailQueueItem, user: User) -> None:
    if item.status == EmailQueueStatus.SENDING:
        raise EmailQueueError("Cannot delete an item that is being sent")
    item.soft_delete()
    db.add(item)
    db.flush()
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="EmailQueueItem",
        entity_id=item.id,
        user_id=user.id,
        metadata={"entity_type": item.entity_type, "entity_id": item.entity_id},
    )


def resend_item(db: Session, *, item: EmailQueueItem, user: User) -> EmailQueueItem:
    if item.status != EmailQueueStatus.FAILED:
        raise EmailQueueError("Only failed items can be resent")
    item.status = EmailQueueStatus.QUEUED
    item.last_error = None
    item.error_message = None
    item.batch_id = None
    db.add(item)
    db.flush()
    log_audit(
        db,
        action=AuditAction.QUEUE,
        entity_type="EmailQueueItem",
        entity_id=item.id,
        user_id=user.id,
        metadata={"event": "resend"},
    )
    return item
