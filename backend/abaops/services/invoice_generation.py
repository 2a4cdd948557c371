from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from abaops.db.base import ensure_aware, utcnow
from abaops.models.enums import ADMIN_ROLES, AuditAction, InvoiceStatus, NotificationType, ScheduledJobType
from abaops.models.invoice import Invoice
from abaops.models.master import Client
from abaops.models.timesheet import Timesheet, TimesheetEntry
from abaops.models.user import User
from abaops.services.activity import log_audit
from abaops.services.billing_period import BillingPeriod, get_billing_period
from abaops.services.invoices import (
    append_timesheet_entries,
    billable_timesheets_query,
    create_invoice_for_client,
    recompute_totals,
    uninvoiced_entries,
)
from abaops.services.notifications import notify_admins
from abaops.services.scheduled_jobs import get_or_create_job, record_run


logger = logging.getLogger(__name__)

PERIOD_TOLERANCE = timedelta(days=1)
REUSABLE_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.READY)


class InvoiceGenerationError(ValueError):
    pass


@dataclass
class GenerationSummary:
    period: BillingPeriod
    success: bool = True
    invoices_created: int = 0
    invoices_updated: int = 0
    clients_processed: int = 0
    skipped: int = 0
    invoice_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "invoices_created": self.invoices_created,
            "invoices_updated": self.invoices_updated,
            "clients_processed": self.clients_processed,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "errors_count": len(self.errors),
            "invoice_ids": list(self.invoice_ids),
            "period_start": self.period.start.isoformat(),
            "period_end": self.period.end.isoformat(),
            "period_label": self.period.label,
        }


def first_admin(db: Session) -> Optional[User]:
    return (
        db.query(User)
        .filter(User.has_any_role(ADMIN_ROLES), User.is_active.is_(True), User.not_deleted())
        .order_by(User.id.asc())
        .first()
    )


def find_reusable_invoice(db: Session, *, client_id: int, period: BillingPeriod) -> Optional[Invoice]:
    """Invoice already covering ``period`` for the client, give or take a day on each side."""
    start, end = period.start_date, period.end_date
    return (
        db.query(Invoice)
        .filter(
            Invoice.client_id == client_id,
            Invoice.not_deleted(),
            Invoice.status.in_(REUSABLE_STATUSES),
            Invoice.start_date >= start - PERIOD_TOLERANCE,
            Invoice.start_date <= start + PERIOD_TOLERANCE,
            Invoice.end_date >= end - PERIOD_TOLERANCE,
            Invoice.end_date <= end + PERIOD_TOLERANCE,
        )
        .order_by(Invoice.id.asc())
        .first()
    )


def _timesheets_for_period(db: Session, period: BillingPeriod) -> List[Timesheet]:
    return (
        billable_timesheets_query(db)
        .filter(
            Timesheet.is_bcba.is_(False),
            Timesheet.start_date <= period.end_date,
            Timesheet.end_date >= period.start_date,
            Timesheet.entries.any(TimesheetEntry.invoiced.is_(False)),
        )
        .order_by(Timesheet.client_id.asc(), Timesheet.start_date.asc(), Timesheet.id.asc())
        .all()
    )


def _bill_client(
    db: Session,
    *,
    client: Client,
    pending: Sequence[Tuple[Timesheet, List[TimesheetEntry]]],
    period: BillingPeriod,
    creator: User,
) -> Tuple[Invoice, bool]:
    invoice = find_reusable_invoice(db, client_id=client.id, period=period)
    if invoice is None:
        invoice = create_invoice_for_client(
            db,
            client=client,
            start_date=period.start_date,
            end_date=period.end_date,
            timesheets=[timesheet for timesheet, _ in pending],
            user_id=creator.id,
            notes=f"Automatically generated for {period.label}",
        )
        return invoice, True

    before_total = invoice.total_amount
    added = 0
    for timesheet, entries in pending:
        added += append_timesheet_entries(db, invoice=invoice, timesheet=timesheet, entries=entries)
    recompute_totals(invoice)
    db.add(invoice)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="Invoice",
        entity_id=invoice.id,
        user_id=creator.id,
        old_values={"total_amount": before_total},
        new_values={"total_amount": invoice.total_amount},
        metadata={"event": "automatic_generation", "entries_added": added, "period_label": period.label},
    )
    return invoice, False


def generate_invoices_for_period(
    db: Session,
    *,
    period: Optional[BillingPeriod] = None,
    now: Optional[datetime] = None,
) -> GenerationSummary:
    """Invoice every approved regular timesheet entry of ``period``; one invoice per client.

    Safe to rerun: already invoiced entries are never billed twice and an
    invoice covering the same period is reused. Each client is billed inside
    its own savepoint so one failing client does not undo the others.
    """
    current = ensure_aware(now) or utcnow()
    period = period or get_billing_period(current)
    summary = GenerationSummary(period=period)

    creator = first_admin(db)
    if creator is None:
        raise InvoiceGenerationError("No active admin user available to own generated invoices")

    logger.info("Invoice generation started for %s", period.label)
    by_client: Dict[int, List[Timesheet]] = defaultdict(list)
    for timesheet in _timesheets_for_period(db, period):
        by_client[timesheet.client_id].append(timesheet)

    for client_id, timesheets in by_client.items():
        client = timesheets[0].client
        summary.clients_processed += 1
        pending = []
        for timesheet in timesheets:
            entries = uninvoiced_entries(timesheet, start_date=period.start_date, end_date=period.end_date)
            if entries:
                pending.append((timesheet, entries))
        if not pending:
            summary.skipped += 1
            summary.errors.append(f"{client.name}: all entries for {period.label} are already invoiced")
            continue
        try:
            with db.begin_nested():
                invoice, created = _bill_client(db, client=client, pending=pending, period=period, creator=creator)
        except (ValueError, SQLAlchemyError) as exc:
            logger.exception("Invoice generation failed for client %s", client_id)
            summary.success = False
            summary.errors.append(f"Failed to generate invoice for {client.name}: {exc}")
            continue
        summary.invoice_ids.append(invoice.id)
        if created:
            summary.invoices_created += 1
        else:
            summary.invoices_updated += 1

    if summary.invoices_created or summary.invoices_updated:
        count = summary.invoices_created + summary.invoices_updated
        noun = "invoice was" if count == 1 else "invoices were"
        message = f"{count} {noun} automatically generated for approved timesheets ({period.label})."
        notify_admins(
            db,
            notif_type=NotificationType.INVOICE_GENERATED,
            title="Automatic Invoice Generation",
            message=message,
            payload={"invoice_ids": summary.invoice_ids, "period_label": period.label},
            send_email_copy=True,
            email_html=_summary_html(summary),
        )

    logger.info(
        "Invoice generation finished for %s: created=%s updated=%s clients=%s skipped=%s errors=%s",
        period.label,
        summary.invoices_created,
        summary.invoices_updated,
        summary.clients_processed,
        summary.skipped,
        len(summary.errors),
    )
    return summary


def run_invoice_generation_job(db: Session, *, now: Optional[datetime] = None) -> GenerationSummary:
    """Scheduled entry point: generate, then stamp the ScheduledJob row."""
    current = ensure_aware(now) or utcnow()
    job = get_or_create_job(db, ScheduledJobType.INVOICE_GENERATION, now=current)
    try:
        summary = generate_invoices_for_period(db, now=current)
    except InvoiceGenerationError as exc:
        period = get_billing_period(current)
        summary = GenerationSummary(period=period, success=False, errors=[f"Invoice generation failed: {exc}"])
        logger.error("Invoice generation aborted: %s", exc)
    record_run(db, job, now=current, metadata=summary.as_dict())
    return summary


def _summary_html(summary: GenerationSummary) -> str:
    rows = [
        f"<p>Billing period: {summary.period.label}</p>",
        "<ul>",
        f"<li>Invoices created: {summary.invoices_created}</li>",
        f"<li>Invoices updated: {summary.invoices_updated}</li>",
        f"<li>Clients processed: {summary.clients_processed}</li>",
        f"<li>Skipped: {summary.skipped}</li>",
        "</ul>",
    ]
    if summary.errors:
        rows.append("<p>Errors:</p><ul>")
        rows.extend(f"<li>{error}</li>" for error in summary.errors)
        rows.append("</ul>")
    return "\n".join(rows)
