from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from abaops.core.security import generate_view_token
from abaops.core.settings import settings
from abaops.db.base import ensure_aware, utcnow
from abaops.models.community import CommunityClass, CommunityClient, CommunityInvoice
from abaops.models.email_queue import EmailQueueItem
from abaops.models.enums import (
    AuditAction,
    CommunityClientStatus,
    CommunityInvoiceStatus,
    EmailQueueContext,
    EmailQueueEntityType,
    EmailQueueStatus,
)
from abaops.models.user import User
from abaops.services.activity import log_audit, snapshot
from abaops.services.billing import _q
from abaops.services.email import EmailAttachment, EmailSendError, send_email
from abaops.services.billing_period import billing_local_to_utc
from abaops.services.email_queue import (
    SENDABLE_STATUSES,
    BatchOutcome,
    crashed_batch_outcome,
    generate_batch_id,
    lock_items,
    mark_failed,
)
from abaops.services.pdf import community_invoice_pdf


logger = logging.getLogger(__name__)

SCHEDULED_SEND_LIMIT = 100
SCHEDULE_MIN_LEAD = timedelta(seconds=30)
AUDIT_FIELDS = ("status", "client_id", "class_id", "units", "rate_per_unit", "total_amount", "service_date")


class CommunityInvoiceError(ValueError):
    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR", status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class CommunityTokenExpired(CommunityInvoiceError):
    pass


def _active_client(db: Session, client_id: int) -> CommunityClient:
    client = db.get(CommunityClient, client_id)
    if not client or client.deleted_at is not None:
        raise CommunityInvoiceError("Community client not found", code="NOT_FOUND", status_code=404)
    if client.status != CommunityClientStatus.ACTIVE:
        raise CommunityInvoiceError("Community client is inactive")
    return client


def _active_class(db: Session, class_id: int) -> CommunityClass:
    community_class = db.get(CommunityClass, class_id)
    if not community_class or community_class.deleted_at is not None:
        raise CommunityInvoiceError("Community class not found", code="NOT_FOUND", status_code=404)
    if not community_class.is_active:
        raise CommunityInvoiceError("Community class is inactive")
    return community_class


def calculate_total(rate_per_unit: Decimal, units: int) -> Decimal:
    return _q(Decimal(rate_per_unit) * Decimal(units))


def create_invoice(db: Session, *, payload, user: User) -> CommunityInvoice:
    client = _active_client(db, payload.client_id)
    community_class = _active_class(db, payload.class_id)
    invoice = CommunityInvoice(
        client_id=client.id,
        class_id=community_class.id,
        units=payload.units,
        rate_per_unit=community_class.rate_per_unit,
        total_amount=calculate_total(community_class.rate_per_unit, payload.units),
        status=CommunityInvoiceStatus.DRAFT,
        service_date=payload.service_date,
        notes=payload.notes,
        created_by_user_id=user.id,
    )
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="CommunityInvoice",
        entity_id=invoice.id,
        user_id=user.id,
        new_values=snapshot(invoice, AUDIT_FIELDS),
    )
    return invoice


def update_invoice(db: Session, *, invoice: CommunityInvoice, payload, user: User) -> CommunityInvoice:
    if invoice.status != CommunityInvoiceStatus.DRAFT:
        raise CommunityInvoiceError("Only draft invoices can be edited")
    before = snapshot(invoice, AUDIT_FIELDS)
    updates = payload.model_dump(exclude_unset=True)
    if updates.get("client_id") is not None:
        invoice.client_id = _active_client(db, updates["client_id"]).id
    if updates.get("class_id") is not None:
        community_class = _active_class(db, updates["class_id"])
        invoice.class_id = community_class.id
        invoice.rate_per_unit = community_class.rate_per_unit
    if updates.get("units") is not None:
        invoice.units = updates["units"]
    for field_name in ("service_date", "notes"):
        if field_name in updates:
            setattr(invoice, field_name, updates[field_name])
    invoice.total_amount = calculate_total(invoice.rate_per_unit, invoice.units)
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="CommunityInvoice",
        entity_id=invoice.id,
        user_id=user.id,
        old_values=before,
        new_values=snapshot(invoice, AUDIT_FIELDS),
    )
    return invoice


def delete_invoice(db: Session, *, invoice: CommunityInvoice, user: User) -> None:
    if invoice.status not in {CommunityInvoiceStatus.DRAFT, CommunityInvoiceStatus.REJECTED}:
        raise CommunityInvoiceError("Only draft or rejected invoices can be deleted")
    invoice.soft_delete()
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="CommunityInvoice",
        entity_id=invoice.id,
        user_id=user.id,
        old_values=snapshot(invoice, AUDIT_FIELDS),
    )


def approve_invoice(
    db: Session,
    *,
    invoice: CommunityInvoice,
    user: User,
    scheduled_send_at: Optional[datetime] = None,
) -> CommunityInvoice:
    """DRAFT -> QUEUED with a public link and an email queue item."""
    if invoice.status != CommunityInvoiceStatus.DRAFT:
        raise CommunityInvoiceError(f"Only draft invoices can be approved. Current status: {invoice.status.value}")
    existing = (
        db.query(EmailQueueItem)
        .filter(
            EmailQueueItem.entity_type == EmailQueueEntityType.COMMUNITY_INVOICE,
            EmailQueueItem.entity_id == invoice.id,
        )
        .first()
    )
    if existing is not None:
        raise CommunityInvoiceError("Invoice is already queued for email", code="ALREADY_QUEUED", status_code=409)

    now = utcnow()
    invoice.status = CommunityInvoiceStatus.QUEUED
    invoice.approved_at = now
    invoice.approved_by_user_id = user.id
    invoice.queued_at = now
    invoice.view_token = generate_view_token()
    invoice.token_expires_at = now + timedelta(days=settings.invoice_token_days)
    db.add(invoice)
    item = EmailQueueItem(
        entity_type=EmailQueueEntityType.COMMUNITY_INVOICE,
        entity_id=invoice.id,
        context=EmailQueueContext.COMMUNITY,
        status=EmailQueueStatus.QUEUED,
        queued_by_user_id=user.id,
        queued_at=now,
        scheduled_send_at=billing_local_to_utc(scheduled_send_at),
    )
    db.add(item)
    try:
        db.flush()
    except IntegrityError as exc:
        raise CommunityInvoiceError(
            "Invoice is already queued for email", code="ALREADY_QUEUED", status_code=409
        ) from exc
    log_audit(
        db,
        action=AuditAction.APPROVE,
        entity_type="CommunityInvoice",
        entity_id=invoice.id,
        user_id=user.id,
        metadata={"queue_item_id": item.id, "scheduled_send_at": item.scheduled_send_at},
    )
    return invoice


def reject_invoice(db: Session, *, invoice: CommunityInvoice, user: User, reason: Optional[str]) -> CommunityInvoice:
    if invoice.status != CommunityInvoiceStatus.DRAFT:
        raise CommunityInvoiceError(f"Only draft invoices can be rejected. Current status: {invoice.status.value}")
    invoice.status = CommunityInvoiceStatus.REJECTED
    invoice.rejected_at = utcnow()
    invoice.rejected_by_user_id = user.id
    invoice.rejection_reason = (reason or "").strip() or None
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.REJECT,
        entity_type="CommunityInvoice",
        entity_id=invoice.id,
        user_id=user.id,
        metadata={"reason": invoice.rejection_reason},
    )
    return invoice


def recipient_for(invoice: CommunityInvoice) -> Optional[str]:
    if invoice.client and invoice.client.email:
        return invoice.client.email
    return settings.community_fallback_email


def _invoices_for_items(db: Session, items: Sequence[EmailQueueItem]) -> Dict[int, CommunityInvoice]:
    ids = [item.entity_id for item in items]
    if not ids:
        return {}
    invoices = (
        db.query(CommunityInvoice)
        .options(selectinload(CommunityInvoice.client), selectinload(CommunityInvoice.community_class))
        .filter(CommunityInvoice.id.in_(ids))
        .all()
    )
    return {invoice.id: invoice for invoice in invoices}


def _email_html(invoice: CommunityInvoice) -> str:
    link = f"{settings.app_base_url.rstrip('/')}/community/invoices/view/{invoice.view_token}"
    return (
        f"<p>Hello {invoice.client_name},</p>"
        f"<p>Please find attached invoice {invoice.invoice_label} for {invoice.class_name} "
        f"({invoice.units} units, total ${invoice.total_amount}).</p>"
        f"<p>You can also view it online: <a href=\"{link}\">{link}</a></p>"
        f"<p>{settings.company_name}</p>"
    )


def _attachment(invoice: CommunityInvoice) -> EmailAttachment:
    return EmailAttachment(filename=f"invoice-{invoice.invoice_label}.pdf", content=community_invoice_pdf(invoice))


def _mark_sent(db: Session, *, item: EmailQueueItem, invoice: CommunityInvoice, recipient: str, sent_at: datetime, user_id: Optional[int]) -> None:
    item.status = EmailQueueStatus.SENT
    item.sent_at = sent_at
    item.attempts += 1
    item.recipient_email = recipient
    db.add(item)
    invoice.status = CommunityInvoiceStatus.EMAILED
    invoice.emailed_at = sent_at
    invoice.email_error = None
    db.add(invoice)
    log_audit(
        db,
        action=AuditAction.EMAIL_SENT,
        entity_type="CommunityInvoice",
        entity_id=invoice.id,
        user_id=user_id,
        metadata={"batch_id": item.batch_id, "recipient": recipient},
    )


def _mark_invoice_failed(db: Session, *, item: EmailQueueItem, invoice: CommunityInvoice, error: str, user_id: Optional[int]) -> None:
    mark_failed(db, item, error)
    invoice.status = CommunityInvoiceStatus.FAILED
    invoice.email_error = error
    db.add(invoice)
    log_audit(
        db,
        action=AuditAction.EMAIL_FAILED,
        entity_type="CommunityInvoice",
        entity_id=invoice.id,
        user_id=user_id,
        metadata={"batch_id": item.batch_id, "error": error},
    )


def _send_one(db: Session, *, item: EmailQueueItem, invoice: Optional[CommunityInvoice], user_id: Optional[int]) -> bool:
    if invoice is None or invoice.deleted_at is not None:
        mark_failed(db, item, "Community invoice not found")
        return False
    recipient = recipient_for(invoice)
    if not recipient:
        _mark_invoice_failed(db, item=item, invoice=invoice, error="No recipient email for community invoice", user_id=user_id)
        return False
    try:
        send_email(
            to_address=recipient,
            subject=f"Invoice {invoice.invoice_label} from {settings.company_name}",
            html=_email_html(invoice),
            text=f"Invoice {invoice.invoice_label}: ${invoice.total_amount}",
            attachments=[_attachment(invoice)],
        )
    except EmailSendError as exc:
        logger.error("Community invoice %s email failed: %s", invoice.id, exc)
        _mark_invoice_failed(db, item=item, invoice=invoice, error=str(exc), user_id=user_id)
        return False
    _mark_sent(db, item=item, invoice=invoice, recipient=recipient, sent_at=utcnow(), user_id=user_id)
    return True


def _deliver_each(db: Session, items: List[EmailQueueItem], *, batch_id: str, user_id: Optional[int]) -> BatchOutcome:
    invoices = _invoices_for_items(db, items)
    outcome = BatchOutcome(success=True, batch_id=batch_id)
    for item in items:
        invoice = invoices.get(item.entity_id)
        if _send_one(db, item=item, invoice=invoice, user_id=user_id):
            outcome.sent += 1
        else:
            outcome.failed += 1
            outcome.errors.append(f"Queue item {item.id}: {item.last_error}")
    db.flush()
    outcome.success = outcome.failed == 0
    outcome.message = f"Sent {outcome.sent} community invoice(s), {outcome.failed} failed"
    return outcome


def _batch_email_html(invoices: Sequence[CommunityInvoice]) -> str:
    base_url = settings.app_base_url.rstrip("/")
    rows = "".join(
        f"<tr><td>{invoice.client_name}</td><td>{invoice.class_name}</td><td>{invoice.units}</td>"
        f"<td>${invoice.total_amount}</td>"
        f"<td><a href=\"{base_url}/community/invoices/view/{invoice.view_token}\">View invoice</a></td></tr>"
        for invoice in invoices
    )
    total = sum((invoice.total_amount for invoice in invoices), Decimal("0"))
    units = sum(invoice.units for invoice in invoices)
    return (
        f"<p>{len(invoices)} approved community invoice(s) attached.</p>"
        f"<p>Total units: {units}. Total amount: ${_q(total)}.</p>"
        "<table><tr><th>Client</th><th>Class</th><th>Units</th><th>Total</th><th>Link</th></tr>"
        f"{rows}</table>"
    )


def _deliver_batch(
    db: Session,
    items: List[EmailQueueItem],
    *,
    recipients: Sequence[str],
    batch_id: str,
    user_id: Optional[int],
) -> BatchOutcome:
    """All invoices as attachments of one email to ``recipients``."""
    invoices = _invoices_for_items(db, items)
    attachments: List[EmailAttachment] = []
    included: List[EmailQueueItem] = []
    errors: List[str] = []
    for item in items:
        invoice = invoices.get(item.entity_id)
        if invoice is None or invoice.deleted_at is not None:
            mark_failed(db, item, "Community invoice not found")
            errors.append(f"Queue item {item.id}: community invoice not found")
            continue
        try:
            attachments.append(_attachment(invoice))
        except (ValueError, TypeError, AttributeError) as exc:
            logger.exception("PDF generation failed for community invoice %s", invoice.id)
            _mark_invoice_failed(db, item=item, invoice=invoice, error=f"PDF generation failed: {exc}", user_id=user_id)
            errors.append(f"{invoice.invoice_label}: PDF generation failed")
            continue
        included.append(item)

    if not included:
        db.flush()
        return BatchOutcome(
            success=False,
            failed=len(items),
            batch_id=batch_id,
            message="No valid community invoices to send",
            errors=errors,
        )

    sent_invoices = [invoices[item.entity_id] for item in included]
    recipient_list = ", ".join(recipients)
    try:
        send_email(
            to_address=list(recipients),
            subject=f"{settings.company_name} approved community invoices ({len(sent_invoices)})",
            html=_batch_email_html(sent_invoices),
            text=f"{len(sent_invoices)} approved community invoice(s) attached.",
            attachments=attachments,
        )
    except EmailSendError as exc:
        logger.error("Community batch %s failed: %s", batch_id, exc)
        for item in included:
            _mark_invoice_failed(db, item=item, invoice=invoices[item.entity_id], error=str(exc), user_id=user_id)
        db.flush()
        return BatchOutcome(
            success=False,
            failed=len(items),
            batch_id=batch_id,
            message=f"Failed to send email: {exc}",
            errors=errors + [str(exc)],
        )

    sent_at = utcnow()
    for item in included:
        _mark_sent(db, item=item, invoice=invoices[item.entity_id], recipient=recipient_list, sent_at=sent_at, user_id=user_id)
    db.flush()
    failed = len(items) - len(included)
    return BatchOutcome(
        success=failed == 0,
        sent=len(included),
        failed=failed,
        batch_id=batch_id,
        message=f"Sent {len(included)} community invoice(s) in one email",
        errors=errors,
    )


def send_items(
    db: Session,
    items: List[EmailQueueItem],
    *,
    user: Optional[User] = None,
    recipients: Optional[Sequence[str]] = None,
) -> BatchOutcome:
    """Send locked items: one combined email when ``recipients`` is given, else one email per invoice."""
    if not items:
        return BatchOutcome(success=True, message="No queued community invoices to send")
    batch_id = generate_batch_id()
    lock_items(db, items, batch_id)
    user_id = user.id if user else None
    try:
        if recipients:
            outcome = _deliver_batch(db, items, recipients=recipients, batch_id=batch_id, user_id=user_id)
        else:
            outcome = _deliver_each(db, items, batch_id=batch_id, user_id=user_id)
    except Exception as exc:
        return crashed_batch_outcome(db, items, batch_id, exc)
    logger.info("Community batch %s: sent=%s failed=%s", batch_id, outcome.sent, outcome.failed)
    return outcome


def normalize_recipients(recipients: Optional[Sequence[str]]) -> List[str]:
    normalized = [email.strip().lower() for email in recipients or [] if email and email.strip()]
    if not normalized:
        raise CommunityInvoiceError(
            "Recipient email address(es) are required for community invoice emails",
            code="RECIPIENT_REQUIRED",
        )
    return normalized


def parse_scheduled_send_at(value: Optional[datetime], *, now: Optional[datetime] = None) -> Optional[datetime]:
    """UTC send time; naive input is billing-timezone wall clock and must be at least a short lead ahead."""
    scheduled = billing_local_to_utc(value)
    if scheduled is None:
        return None
    minimum = (ensure_aware(now) or utcnow()) + SCHEDULE_MIN_LEAD
    if scheduled <= minimum:
        raise CommunityInvoiceError(
            f"Scheduled send time must be at least {int(SCHEDULE_MIN_LEAD.total_seconds())} seconds in the future",
            code="INVALID_SCHEDULE",
        )
    return scheduled


def _community_items_query(db: Session):
    return db.query(EmailQueueItem).filter(
        EmailQueueItem.context == EmailQueueContext.COMMUNITY,
        EmailQueueItem.entity_type == EmailQueueEntityType.COMMUNITY_INVOICE,
        EmailQueueItem.not_deleted(),
    )


def schedule_items(
    db: Session,
    items: List[EmailQueueItem],
    *,
    recipients: Sequence[str],
    scheduled_send_at: datetime,
    user: Optional[User],
) -> BatchOutcome:
    if not items:
        return BatchOutcome(success=True, message="No queued community invoices to schedule")
    recipient_list = ", ".join(recipients)
    for item in items:
        item.scheduled_send_at = scheduled_send_at
        item.recipient_email = recipient_list
        db.add(item)
        log_audit(
            db,
            action=AuditAction.QUEUE,
            entity_type="CommunityInvoice",
            entity_id=item.entity_id,
            user_id=user.id if user else None,
            metadata={"event": "schedule", "scheduled_send_at": scheduled_send_at, "recipients": list(recipients)},
        )
    db.flush()
    logger.info("Scheduled %s community invoice(s) for %s", len(items), scheduled_send_at.isoformat())
    return BatchOutcome(
        success=True,
        scheduled=len(items),
        scheduled_send_at=scheduled_send_at,
        message=f"Scheduled {len(items)} community invoice(s) for {scheduled_send_at.isoformat()}",
    )


def send_batch(
    db: Session,
    *,
    user: Optional[User],
    recipients: Optional[Sequence[str]],
    item_ids: Optional[Sequence[int]] = None,
    scheduled_send_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> BatchOutcome:
    """Send (or schedule) queued community invoices as one email to the given recipients."""
    normalized = normalize_recipients(recipients)
    current = ensure_aware(now) or utcnow()
    scheduled = parse_scheduled_send_at(scheduled_send_at, now=current)

    query = _community_items_query(db)
    if item_ids:
        query = query.filter(EmailQueueItem.id.in_(list(item_ids)), EmailQueueItem.status.in_(SENDABLE_STATUSES))
    else:
        query = query.filter(EmailQueueItem.status == EmailQueueStatus.QUEUED)
    if scheduled is None:
        query = query.filter(
            or_(EmailQueueItem.scheduled_send_at.is_(None), EmailQueueItem.scheduled_send_at <= current)
        )
    items = query.order_by(EmailQueueItem.queued_at.asc(), EmailQueueItem.id.asc()).all()

    if scheduled is not None:
        return schedule_items(db, items, recipients=normalized, scheduled_send_at=scheduled, user=user)
    return send_items(db, items, user=user, recipients=normalized)


def resend_item(db: Session, *, item: EmailQueueItem, user: User) -> EmailQueueItem:
    if item.status != EmailQueueStatus.FAILED:
        raise CommunityInvoiceError("Only failed items can be resent")
    item.status = EmailQueueStatus.QUEUED
    item.last_error = None
    item.error_message = None
    item.batch_id = None
    db.add(item)
    invoice = db.get(CommunityInvoice, item.entity_id)
    if invoice is not None and invoice.status == CommunityInvoiceStatus.FAILED:
        invoice.status = CommunityInvoiceStatus.QUEUED
        invoice.email_error = None
        db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.QUEUE,
        entity_type="CommunityInvoice",
        entity_id=item.entity_id,
        user_id=user.id,
        metadata={"event": "resend", "queue_item_id": item.id},
    )
    return item


def due_scheduled_items(db: Session, *, now: Optional[datetime] = None, limit: int = SCHEDULED_SEND_LIMIT) -> List[EmailQueueItem]:
    current = ensure_aware(now) or utcnow()
    return (
        _community_items_query(db)
        .filter(
            EmailQueueItem.status == EmailQueueStatus.QUEUED,
            EmailQueueItem.scheduled_send_at.is_not(None),
            EmailQueueItem.scheduled_send_at <= current,
        )
        .order_by(EmailQueueItem.scheduled_send_at.asc(), EmailQueueItem.id.asc())
        .limit(limit)
        .all()
    )


def _stored_recipients(item: EmailQueueItem) -> Tuple[str, ...]:
    return tuple(email.strip() for email in (item.recipient_email or "").split(",") if email.strip())


def run_scheduled_sender(db: Session, *, now: Optional[datetime] = None, limit: int = SCHEDULED_SEND_LIMIT) -> BatchOutcome:
    """Send community invoices whose scheduled time has passed.

    Items scheduled from the queue carry their recipients and go out as one email per
    scheduled time; items scheduled at approval go to each client individually.
    """
    items = due_scheduled_items(db, now=now, limit=limit)
    total = BatchOutcome(success=True, message="No scheduled community invoices due")
    if not items:
        return total
    groups: Dict[Tuple[datetime, Tuple[str, ...]], List[EmailQueueItem]] = defaultdict(list)
    for item in items:
        groups[(ensure_aware(item.scheduled_send_at), _stored_recipients(item))].append(item)
    for (scheduled_at, recipients), group in sorted(groups.items()):
        logger.info("Sending %s community invoice(s) scheduled for %s", len(group), scheduled_at.isoformat())
        outcome = send_items(db, group, recipients=recipients or None)
        total.sent += outcome.sent
        total.failed += outcome.failed
        total.errors.extend(outcome.errors)
        total.batch_id = outcome.batch_id
    total.success = total.failed == 0
    total.message = f"Sent {total.sent} scheduled community invoice(s), {total.failed} failed"
    return total


def get_invoice_by_token(db: Session, token: str) -> Optional[CommunityInvoice]:
    invoice = (
        db.query(CommunityInvoice)
        .options(selectinload(CommunityInvoice.client), selectinload(CommunityInvoice.community_class))
        .filter(CommunityInvoice.view_token == token, CommunityInvoice.not_deleted())
        .first()
    )
    if not invoice:
        return None
    expires_at = ensure_aware(invoice.token_expires_at)
    if expires_at is not None and expires_at < utcnow():
        raise CommunityTokenExpired("Invoice link has expired", code="EXPIRED", status_code=410)
    return invoice
