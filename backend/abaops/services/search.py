from __future__ import annotations

import re

from sqlalchemy.orm import Session, selectinload

from abaops.core.rbac import has_permission, is_admin
from abaops.models.invoice import Invoice
from abaops.models.timesheet import Timesheet
from abaops.models.user import User
from abaops.schemas.search import InvoiceHit, SearchResult, TimesheetHit


TIMESHEET_NUMBER = re.compile(r"^B?T-\d+$")
INVOICE_PREFIX = "INV-"


class SearchError(ValueError):
    def __init__(self, message: str, *, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _timesheet_hit(timesheet: Timesheet) -> TimesheetHit:
    return TimesheetHit(
        id=timesheet.id,
        timesheet_number=timesheet.timesheet_number,
        is_bcba=timesheet.is_bcba,
        status=timesheet.status,
        start_date=timesheet.start_date,
        end_date=timesheet.end_date,
        client=timesheet.client.name if timesheet.client else None,
        provider=timesheet.provider.name if timesheet.provider else None,
        bcba=timesheet.bcba.name if timesheet.bcba else None,
        invoice_id=timesheet.invoice_id,
    )


def _invoice_hit(invoice: Invoice) -> InvoiceHit:
    return InvoiceHit(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        client=invoice.client.name if invoice.client else None,
        status=invoice.status,
        total_amount=invoice.total_amount,
        start_date=invoice.start_date,
        end_date=invoice.end_date,
    )


def _timesheets(db: Session, user: User):
    query = (
        db.query(Timesheet)
        .options(
            selectinload(Timesheet.client),
            selectinload(Timesheet.provider),
            selectinload(Timesheet.bcba),
            selectinload(Timesheet.invoice).selectinload(Invoice.client),
        )
        .filter(Timesheet.not_deleted())
    )
    if not is_admin(user):
        query = query.filter(Timesheet.user_id == user.id)
    return query


def find_timesheet(db: Session, number: str, user: User) -> SearchResult:
    timesheet = _timesheets(db, user).filter(Timesheet.timesheet_number == number).first()
    if timesheet is None:
        return SearchResult(kind="timesheet", message="Timesheet not found")
    invoice = timesheet.invoice if timesheet.invoice and timesheet.invoice.deleted_at is None else None
    if invoice is not None and not has_permission(user, "invoices.view"):
        invoice = None
    return SearchResult(
        kind="timesheet",
        timesheet=_timesheet_hit(timesheet),
        invoice=_invoice_hit(invoice) if invoice else None,
        message="Timesheet is invoiced" if timesheet.invoice_id else "Timesheet is unbilled",
    )


def find_invoice(db: Session, number: str, user: User) -> SearchResult:
    if not has_permission(user, "invoices.view"):
        raise SearchError("Missing permission: invoices.view (view)", status_code=403)
    invoice = (
        db.query(Invoice)
        .options(selectinload(Invoice.client))
        .filter(Invoice.invoice_number == number, Invoice.not_deleted())
        .first()
    )
    if invoice is None:
        return SearchResult(kind="invoice", message="Invoice not found")
    timesheets = _timesheets(db, user).filter(Timesheet.invoice_id == invoice.id).order_by(Timesheet.id.asc()).all()
    return SearchResult(
        kind="invoice",
        invoice=_invoice_hit(invoice),
        timesheets=[_timesheet_hit(timesheet) for timesheet in timesheets],
        message=f"Invoice contains {len(timesheets)} timesheet(s)",
    )


def search(db: Session, query: str, user: User) -> SearchResult:
    """Look up a timesheet (T-1001, BT-1002) or an invoice (INV-...) by its number."""
    value = (query or "").strip().upper()
    if not value:
        raise SearchError("Search query is required")
    if TIMESHEET_NUMBER.match(value):
        return find_timesheet(db, value, user)
    if value.startswith(INVOICE_PREFIX):
        return find_invoice(db, value, user)
    raise SearchError("Invalid search format. Use T-1001, BT-1002, or INV-2026-00001")
