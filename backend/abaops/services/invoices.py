from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session, selectinload

from abaops.core.security import generate_view_token
from abaops.core.settings import settings
from abaops.db.base import ensure_aware, utcnow
from abaops.models.enums import AuditAction, InvoiceStatus, NotificationType, TimesheetStatus
from abaops.models.invoice import Invoice, InvoiceAdjustment, InvoiceEntry, InvoicePayment
from abaops.models.master import Client
from abaops.models.timesheet import Timesheet, TimesheetEntry
from abaops.models.user import User
from abaops.services.activity import log_audit, snapshot
from abaops.services.billing import (
    ZERO,
    _q,
    calculate_entry_totals,
    compute_outstanding,
    rate_for_timesheet,
    status_after_payment,
)
from abaops.services.notifications import notify_admins


logger = logging.getLogger(__name__)

BILLABLE_TIMESHEET_STATUSES = (TimesheetStatus.APPROVED, TimesheetStatus.QUEUED, TimesheetStatus.EMAILED)
EDITABLE_STATUSES = {InvoiceStatus.DRAFT, InvoiceStatus.READY}
AUDIT_FIELDS = ("status", "total_amount", "paid_amount", "adjustments", "outstanding", "start_date", "end_date")


class InvoiceError(ValueError):
    pass


class InvoiceTokenExpired(InvoiceError):
    pass


@dataclass
class BatchInvoiceResult:
    invoice_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def generate_invoice_number(db: Session, *, now: Optional[datetime] = None) -> str:
    year = (now or utcnow()).year
    sequence = db.query(Invoice).count() + 1
    while True:
        number = f"INV-{year}-{sequence:05d}"
        if not db.query(Invoice.id).filter(Invoice.invoice_number == number).first():
            return number
        sequence += 1


def recompute_totals(invoice: Invoice) -> Invoice:
    invoice.total_amount = _q(sum((entry.amount for entry in invoice.entries), ZERO))
    invoice.outstanding = compute_outstanding(invoice.total_amount, invoice.adjustments, invoice.paid_amount)
    return invoice


def billable_timesheets_query(db: Session):
    return (
        db.query(Timesheet)
        .options(
            selectinload(Timesheet.entries),
            selectinload(Timesheet.client).selectinload(Client.insurance),
            selectinload(Timesheet.insurance),
            selectinload(Timesheet.bcba_insurance),
        )
        .filter(
            Timesheet.deleted_at.is_(None),
            Timesheet.status.in_(BILLABLE_TIMESHEET_STATUSES),
        )
    )


def uninvoiced_entries(
    timesheet: Timesheet,
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[TimesheetEntry]:
    selected = []
    for entry in timesheet.entries:
        if entry.invoiced:
            continue
        if start_date and entry.date < start_date:
            continue
        if end_date and entry.date > end_date:
            continue
        selected.append(entry)
    return selected


def append_timesheet_entries(
    db: Session,
    *,
    invoice: Invoice,
    timesheet: Timesheet,
    entries: Sequence[TimesheetEntry],
    rate: Optional[Decimal] = None,
) -> int:
    """Bill ``entries`` of ``timesheet`` on ``invoice`` and flag them invoiced."""
    if not entries:
        return 0
    if rate is None:
        rate = rate_for_timesheet(timesheet)
    is_regular = not timesheet.is_bcba
    insurance_id = timesheet.insurance_id or timesheet.client.insurance_id
    now = utcnow()
    for entry in entries:
        totals = calculate_entry_totals(entry.minutes, entry.notes, rate, is_regular)
        invoice.entries.append(
            InvoiceEntry(
                timesheet_id=timesheet.id,
                timesheet_entry_id=entry.id,
                provider_id=timesheet.provider_id,
                insurance_id=insurance_id,
                service_date=entry.date,
                entry_type=entry.notes,
                units=totals.units,
                billable_units=totals.billable_units,
                rate=rate,
                amount=totals.amount,
            )
        )
        entry.invoiced = True
        db.add(entry)
    timesheet.invoiced_at = now
    timesheet.invoice = invoice
    db.add(timesheet)
    return len(entries)


def create_invoice_for_client(
    db: Session,
    *,
    client: Client,
    start_date: date,
    end_date: date,
    timesheets: Sequence[Timesheet],
    user_id: int,
    notes: Optional[str] = None,
    restrict_to_range: bool = True,
) -> Invoice:
    invoice = Invoice(
        invoice_number=generate_invoice_number(db),
        client_id=client.id,
        start_date=start_date,
        end_date=end_date,
        status=InvoiceStatus.DRAFT,
        total_amount=ZERO,
        paid_amount=ZERO,
        adjustments=ZERO,
        outstanding=ZERO,
        notes=notes,
        created_by_user_id=user_id,
    )
    db.add(invoice)
    billed = 0
    for timesheet in timesheets:
        entries = (
            uninvoiced_entries(timesheet, start_date=start_date, end_date=end_date)
            if restrict_to_range
            else uninvoiced_entries(timesheet)
        )
        if not entries:
            continue
        try:
            rate = rate_for_timesheet(timesheet)
        except ValueError as exc:
            raise InvoiceError(str(exc)) from exc
        billed += append_timesheet_entries(db, invoice=invoice, timesheet=timesheet, entries=entries, rate=rate)
    if billed == 0:
        raise InvoiceError("No billable timesheet entries found for this client and period")
    recompute_totals(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="Invoice",
        entity_id=invoice.id,
        user_id=user_id,
        new_values=snapshot(invoice, AUDIT_FIELDS),
        metadata={
            "invoice_number": invoice.invoice_number,
            "client_id": client.id,
            "timesheet_count": len({entry.timesheet_id for entry in invoice.entries}),
        },
    )
    return invoice


def create_manual_invoice(db: Session, *, payload, user: User) -> Invoice:
    if payload.end_date < payload.start_date:
        raise InvoiceError("End date must be on or after start date")
    client = db.get(Client, payload.client_id)
    if not client or client.deleted_at is not None:
        raise InvoiceError("Client not found")

    query = billable_timesheets_query(db).filter(Timesheet.client_id == client.id)
    if payload.timesheet_ids:
        timesheets = query.filter(Timesheet.id.in_(payload.timesheet_ids)).order_by(Timesheet.start_date.asc()).all()
        missing = set(payload.timesheet_ids) - {timesheet.id for timesheet in timesheets}
        if missing:
            raise InvoiceError(f"Timesheets not billable for this client: {sorted(missing)}")
    else:
        timesheets = (
            query.filter(Timesheet.start_date <= payload.end_date, Timesheet.end_date >= payload.start_date)
            .order_by(Timesheet.start_date.asc())
            .all()
        )
    if not timesheets:
        raise InvoiceError("No approved timesheets found for this client and period")

    return create_invoice_for_client(
        db,
        client=client,
        start_date=payload.start_date,
        end_date=payload.end_date,
        timesheets=timesheets,
        user_id=user.id,
        notes=payload.notes,
        restrict_to_range=not payload.timesheet_ids,
    )


def generate_invoices_for_timesheets(db: Session, *, timesheet_ids: Iterable[int], user: User) -> BatchInvoiceResult:
    """One invoice per client from the selected approved timesheets."""
    result = BatchInvoiceResult()
    timesheets = billable_timesheets_query(db).filter(Timesheet.id.in_(list(timesheet_ids))).all()
    if not timesheets:
        raise InvoiceError("No approved timesheets selected")

    by_client: Dict[int, List[Timesheet]] = defaultdict(list)
    for timesheet in timesheets:
        by_client[timesheet.client_id].append(timesheet)

    for client_id, client_timesheets in by_client.items():
        client = client_timesheets[0].client
        with_entries = [ts for ts in client_timesheets if uninvoiced_entries(ts)]
        if not with_entries:
            result.errors.append(f"{client.name}: all selected entries are already invoiced")
            continue
        dates = [entry.date for ts in with_entries for entry in uninvoiced_entries(ts)]
        try:
            with db.begin_nested():
                invoice = create_invoice_for_client(
                    db,
                    client=client,
                    start_date=min(dates),
                    end_date=max(dates),
                    timesheets=with_entries,
                    user_id=user.id,
                    restrict_to_range=False,
                )
        except InvoiceError as exc:
            result.errors.append(f"{client.name}: {exc}")
            continue
        result.invoice_ids.append(invoice.id)
    if result.invoice_ids:
        notify_admins(
            db,
            notif_type=NotificationType.INVOICE_GENERATED,
            title="Invoices generated",
            message=f"{len(result.invoice_ids)} invoice(s) generated from selected timesheets.",
            payload={"invoice_ids": result.invoice_ids},
            exclude_user_ids=[user.id],
        )
    return result


def release_invoice_entries(db: Session, invoice: Invoice) -> None:
    entry_ids = [entry.timesheet_entry_id for entry in invoice.entries if entry.timesheet_entry_id]
    if entry_ids:
        for ts_entry in db.query(TimesheetEntry).filter(TimesheetEntry.id.in_(entry_ids)).all():
            ts_entry.invoiced = False
            db.add(ts_entry)
    for timesheet in db.query(Timesheet).filter(Timesheet.invoice_id == invoice.id).all():
        timesheet.invoice_id = None
        timesheet.invoiced_at = None
        db.add(timesheet)
    db.flush()


def update_invoice(db: Session, *, invoice: Invoice, payload, user: User) -> Invoice:
    if invoice.status not in EDITABLE_STATUSES:
        raise InvoiceError(f"Only draft or ready invoices can be edited. Current status: {invoice.status.value}")
    before = snapshot(invoice, AUDIT_FIELDS + ("notes",))
    updates = payload.model_dump(exclude_unset=True)
    for field_name, value in updates.items():
        setattr(invoice, field_name, value)
    if invoice.end_date < invoice.start_date:
        raise InvoiceError("End date must be on or after start date")
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="Invoice",
        entity_id=invoice.id,
        user_id=user.id,
        old_values=before,
        new_values=snapshot(invoice, AUDIT_FIELDS + ("notes",)),
    )
    return invoice


def delete_invoice(db: Session, *, invoice: Invoice, user: User) -> None:
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvoiceError("Only draft invoices can be deleted")
    release_invoice_entries(db, invoice)
    invoice.soft_delete()
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="Invoice",
        entity_id=invoice.id,
        user_id=user.id,
        old_values=snapshot(invoice, AUDIT_FIELDS),
    )


def approve_invoice(db: Session, *, invoice: Invoice, user: User) -> Invoice:
    if invoice.status not in EDITABLE_STATUSES:
        raise InvoiceError(f"Only draft or ready invoices can be approved. Current status: {invoice.status.value}")
    now = utcnow()
    invoice.status = InvoiceStatus.SENT
    invoice.sent_at = now
    invoice.approved_by_user_id = user.id
    invoice.view_token = generate_view_token()
    invoice.token_expires_at = now + timedelta(days=settings.invoice_token_days)
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.APPROVE,
        entity_type="Invoice",
        entity_id=invoice.id,
        user_id=user.id,
        metadata={"invoice_number": invoice.invoice_number},
    )
    return invoice


def record_payment(db: Session, *, invoice: Invoice, payload, user: User) -> InvoicePayment:
    if invoice.status == InvoiceStatus.VOID:
        raise InvoiceError("Cannot record a payment on a void invoice")
    if invoice.status == InvoiceStatus.PAID:
        raise InvoiceError("Invoice is already paid")
    amount = _q(Decimal(payload.amount))
    if amount <= 0:
        raise InvoiceError("Payment amount must be greater than zero")
    payment = InvoicePayment(
        invoice_id=invoice.id,
        amount=amount,
        payment_date=payload.payment_date,
        method=payload.method,
        reference=payload.reference,
        notes=payload.notes,
        created_by_user_id=user.id,
    )
    db.add(payment)
    invoice.paid_amount = _q(invoice.paid_amount + amount)
    invoice.outstanding = compute_outstanding(invoice.total_amount, invoice.adjustments, invoice.paid_amount)
    invoice.status = status_after_payment(invoice.outstanding, invoice.paid_amount, invoice.status)
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.PAYMENT,
        entity_type="Invoice",
        entity_id=invoice.id,
        user_id=user.id,
        metadata={
            "amount": amount,
            "payment_date": payload.payment_date,
            "outstanding": invoice.outstanding,
            "status": invoice.status,
        },
    )
    notify_admins(
        db,
        notif_type=NotificationType.INVOICE_PAYMENT,
        title="Invoice payment recorded",
        message=f"Payment of ${amount} recorded on {invoice.invoice_number}.",
        payload={"invoice_id": invoice.id},
        exclude_user_ids=[user.id],
    )
    return payment


def add_adjustment(db: Session, *, invoice: Invoice, payload, user: User) -> InvoiceAdjustment:
    if invoice.status == InvoiceStatus.VOID:
        raise InvoiceError("Cannot adjust a void invoice")
    amount = _q(Decimal(payload.amount))
    if amount == 0:
        raise InvoiceError("Adjustment amount must be non-zero")
    adjustment = InvoiceAdjustment(
        invoice_id=invoice.id,
        amount=amount,
        reason=payload.reason,
        created_by_user_id=user.id,
    )
    db.add(adjustment)
    invoice.adjustments = _q(invoice.adjustments + amount)
    invoice.outstanding = compute_outstanding(invoice.total_amount, invoice.adjustments, invoice.paid_amount)
    if invoice.status in {InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID}:
        if invoice.outstanding <= 0:
            invoice.status = InvoiceStatus.PAID
        elif invoice.paid_amount > 0:
            invoice.status = InvoiceStatus.PARTIALLY_PAID
        else:
            invoice.status = InvoiceStatus.SENT
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.ADJUSTMENT,
        entity_type="Invoice",
        entity_id=invoice.id,
        user_id=user.id,
        metadata={"amount": amount, "reason": payload.reason, "outstanding": invoice.outstanding},
    )
    return adjustment


def void_invoice(db: Session, *, invoice: Invoice, user: User) -> Invoice:
    if invoice.status not in EDITABLE_STATUSES:
        raise InvoiceError(f"Only draft or ready invoices can be voided. Current status: {invoice.status.value}")
    before = snapshot(invoice, AUDIT_FIELDS)
    release_invoice_entries(db, invoice)
    invoice.status = InvoiceStatus.VOID
    invoice.voided_at = utcnow()
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="Invoice",
        entity_id=invoice.id,
        user_id=user.id,
        old_values=before,
        new_values=snapshot(invoice, AUDIT_FIELDS),
        metadata={"event": "void"},
    )
    return invoice


def get_invoice_by_token(db: Session, token: str) -> Optional[Invoice]:
    """Public lookup; raises InvoiceTokenExpired past ``token_expires_at``."""
    invoice = (
        db.query(Invoice)
        .options(selectinload(Invoice.entries).selectinload(InvoiceEntry.provider), selectinload(Invoice.client))
        .filter(Invoice.view_token == token, Invoice.not_deleted())
        .first()
    )
    if not invoice:
        return None
    expires_at = ensure_aware(invoice.token_expires_at)
    if expires_at is not None and expires_at < utcnow():
        raise InvoiceTokenExpired("Invoice link has expired")
    return invoice
