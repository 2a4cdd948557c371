from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session, selectinload

from abaops.core.rbac import is_admin
from abaops.db.base import utcnow
from abaops.models.enums import InvoiceStatus, TimesheetStatus
from abaops.models.invoice import Invoice, InvoiceEntry
from abaops.models.master import Insurance
from abaops.models.timesheet import Timesheet
from abaops.models.user import User
from abaops.schemas.analytics import (
    AnalyticsReport,
    AnalyticsSummary,
    ClientBilling,
    InsuranceComparison,
    ProviderProductivity,
    RevenuePoint,
    StatusCount,
    TimesheetTrendPoint,
    WaterfallStep,
)
from abaops.services.billing import ZERO, _q


logger = logging.getLogger(__name__)

TIMESHEET_LIMIT = 5000
TOP_PROVIDERS = 10
DEFAULT_MONTHS = 12

# Statuses a timesheet can only reach after approval.
APPROVED_STATUSES = frozenset(
    {TimesheetStatus.APPROVED, TimesheetStatus.QUEUED, TimesheetStatus.EMAILED, TimesheetStatus.LOCKED}
)


@dataclass(frozen=True)
class AnalyticsFilters:
    start_date: date
    end_date: date
    provider_id: Optional[int] = None
    client_id: Optional[int] = None
    bcba_id: Optional[int] = None
    insurance_id: Optional[int] = None


def _months_back(value: date, months: int) -> date:
    month_index = value.year * 12 + value.month - 1 - months
    year, month = divmod(month_index, 12)
    return date(year, month + 1, min(value.day, 28))


def build_filters(
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    provider_id: Optional[int] = None,
    client_id: Optional[int] = None,
    bcba_id: Optional[int] = None,
    insurance_id: Optional[int] = None,
    today: Optional[date] = None,
) -> AnalyticsFilters:
    end = end_date or today or utcnow().date()
    start = start_date or _months_back(end, DEFAULT_MONTHS)
    if start > end:
        raise ValueError("start_date must be on or before end_date")
    return AnalyticsFilters(
        start_date=start,
        end_date=end,
        provider_id=provider_id,
        client_id=client_id,
        bcba_id=bcba_id,
        insurance_id=insurance_id,
    )


def _bounds(filters: AnalyticsFilters):
    start = datetime.combine(filters.start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(filters.end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end


def _month_keys(start: date, end: date) -> List[str]:
    keys = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        keys.append(f"{year:04d}-{month:02d}")
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return keys


def _month_label(key: str) -> str:
    return datetime.strptime(key, "%Y-%m").strftime("%b %Y")


def _month_of(value: datetime) -> str:
    return value.strftime("%Y-%m")


def load_timesheets(db: Session, user: User, filters: AnalyticsFilters) -> List[Timesheet]:
    start, end = _bounds(filters)
    query = (
        db.query(Timesheet)
        .options(selectinload(Timesheet.entries), selectinload(Timesheet.provider))
        .filter(Timesheet.not_deleted(), Timesheet.created_at >= start, Timesheet.created_at < end)
    )
    if not is_admin(user):
        query = query.filter(Timesheet.user_id == user.id)
    if filters.provider_id:
        query = query.filter(Timesheet.provider_id == filters.provider_id)
    if filters.client_id:
        query = query.filter(Timesheet.client_id == filters.client_id)
    if filters.bcba_id:
        query = query.filter(Timesheet.bcba_id == filters.bcba_id)
    if filters.insurance_id:
        query = query.filter(Timesheet.insurance_id == filters.insurance_id)
    return query.order_by(Timesheet.created_at.desc()).limit(TIMESHEET_LIMIT).all()


def load_invoices(db: Session, filters: AnalyticsFilters) -> List[Invoice]:
    start, end = _bounds(filters)
    query = (
        db.query(Invoice)
        .options(selectinload(Invoice.entries), selectinload(Invoice.client))
        .filter(
            Invoice.not_deleted(),
            Invoice.status != InvoiceStatus.VOID,
            Invoice.created_at >= start,
            Invoice.created_at < end,
        )
    )
    if filters.client_id:
        query = query.filter(Invoice.client_id == filters.client_id)
    if filters.insurance_id:
        query = query.filter(Invoice.entries.any(InvoiceEntry.insurance_id == filters.insurance_id))
    return query.order_by(Invoice.created_at.asc()).all()


def revenue_trends(invoices: Sequence[Invoice], filters: AnalyticsFilters) -> List[RevenuePoint]:
    months: Dict[str, List[Decimal]] = OrderedDict(
        (key, [ZERO, ZERO]) for key in _month_keys(filters.start_date, filters.end_date)
    )
    for invoice in invoices:
        bucket = months.get(_month_of(invoice.created_at))
        if bucket is None:
            continue
        bucket[0] += invoice.total_amount
        bucket[1] += invoice.paid_amount
    return [
        RevenuePoint(month=key, label=_month_label(key), billed=_q(billed), paid=_q(paid))
        for key, (billed, paid) in months.items()
    ]


def timesheet_trends(timesheets: Sequence[Timesheet], filters: AnalyticsFilters) -> List[TimesheetTrendPoint]:
    months: Dict[str, Counter] = OrderedDict(
        (key, Counter()) for key in _month_keys(filters.start_date, filters.end_date)
    )
    for timesheet in timesheets:
        bucket = months.get(_month_of(timesheet.created_at))
        if bucket is None:
            continue
        bucket["created"] += 1
        if timesheet.status in APPROVED_STATUSES:
            bucket["approved"] += 1
        if timesheet.status == TimesheetStatus.REJECTED:
            bucket["rejected"] += 1
    return [
        TimesheetTrendPoint(
            month=key,
            label=_month_label(key),
            created=counts["created"],
            approved=counts["approved"],
            rejected=counts["rejected"],
        )
        for key, counts in months.items()
    ]


def provider_productivity(timesheets: Sequence[Timesheet]) -> List[ProviderProductivity]:
    rows: Dict[int, dict] = {}
    for timesheet in timesheets:
        row = rows.setdefault(
            timesheet.provider_id,
            {
                "name": timesheet.provider.name if timesheet.provider else "Unknown",
                "units": ZERO,
                "minutes": 0,
                "count": 0,
            },
        )
        row["count"] += 1
        for entry in timesheet.entries:
            row["units"] += entry.units
            row["minutes"] += entry.minutes
    ranked = sorted(rows.items(), key=lambda item: item[1]["minutes"], reverse=True)[:TOP_PROVIDERS]
    return [
        ProviderProductivity(
            provider_id=provider_id,
            name=row["name"],
            units=_q(row["units"]),
            hours=_q(Decimal(row["minutes"]) / Decimal(60)),
            timesheet_count=row["count"],
        )
        for provider_id, row in ranked
    ]


def client_billing(invoices: Sequence[Invoice]) -> List[ClientBilling]:
    rows: Dict[int, dict] = {}
    for invoice in invoices:
        row = rows.setdefault(
            invoice.client_id,
            {
                "name": invoice.client.name if invoice.client else "Unknown",
                "billed": ZERO,
                "paid": ZERO,
                "outstanding": ZERO,
                "count": 0,
            },
        )
        row["count"] += 1
        row["billed"] += invoice.total_amount
        row["paid"] += invoice.paid_amount
        row["outstanding"] += invoice.outstanding
    ranked = sorted(rows.items(), key=lambda item: item[1]["billed"], reverse=True)
    return [
        ClientBilling(
            client_id=client_id,
            name=row["name"],
            total_billed=_q(row["billed"]),
            total_paid=_q(row["paid"]),
            outstanding=_q(row["outstanding"]),
            invoice_count=row["count"],
        )
        for client_id, row in ranked
    ]


def _status_counts(statuses, label) -> List[StatusCount]:
    counts = Counter(status.value for status in statuses)
    return [StatusCount(status=status, label=label(status), count=count) for status, count in sorted(counts.items())]


def financial_waterfall(invoices: Sequence[Invoice]) -> List[WaterfallStep]:
    billed = sum((invoice.total_amount for invoice in invoices), ZERO)
    paid = sum((invoice.paid_amount for invoice in invoices), ZERO)
    adjustments = sum((invoice.adjustments for invoice in invoices), ZERO)
    return [
        WaterfallStep(label="Total Billed", value=_q(billed)),
        WaterfallStep(label="Total Paid", value=_q(paid)),
        WaterfallStep(label="Adjustments", value=_q(adjustments)),
        WaterfallStep(label="Outstanding", value=_q(billed - paid + adjustments)),
    ]


def insurance_comparisons(db: Session, invoices: Sequence[Invoice]) -> List[InsuranceComparison]:
    """Billed per insurance from entry amounts; paid is each invoice's payments spread by entry share."""
    rows: Dict[int, dict] = {}
    for invoice in invoices:
        ratio = invoice.paid_amount / invoice.total_amount if invoice.total_amount > 0 else ZERO
        for entry in invoice.entries:
            row = rows.setdefault(entry.insurance_id, {"billed": ZERO, "paid": ZERO, "count": 0})
            row["billed"] += entry.amount
            row["paid"] += entry.amount * ratio
            row["count"] += 1
    names = {}
    if rows:
        names = dict(db.query(Insurance.id, Insurance.name).filter(Insurance.id.in_(list(rows))).all())
    ranked = sorted(rows.items(), key=lambda item: item[1]["billed"], reverse=True)
    return [
        InsuranceComparison(
            insurance_id=insurance_id,
            name=names.get(insurance_id, "Unknown"),
            total_billed=_q(row["billed"]),
            total_paid=_q(row["paid"]),
            entry_count=row["count"],
        )
        for insurance_id, row in ranked
    ]


def summary(timesheets: Sequence[Timesheet], invoices: Sequence[Invoice]) -> AnalyticsSummary:
    return AnalyticsSummary(
        total_timesheets=len(timesheets),
        approved_timesheets=sum(1 for timesheet in timesheets if timesheet.status in APPROVED_STATUSES),
        rejected_timesheets=sum(1 for timesheet in timesheets if timesheet.status == TimesheetStatus.REJECTED),
        total_invoices=len(invoices),
        total_billed=_q(sum((invoice.total_amount for invoice in invoices), ZERO)),
        total_paid=_q(sum((invoice.paid_amount for invoice in invoices), ZERO)),
        total_outstanding=_q(sum((invoice.outstanding for invoice in invoices), ZERO)),
    )


def build_report(db: Session, user: User, filters: AnalyticsFilters) -> AnalyticsReport:
    timesheets = load_timesheets(db, user, filters)
    invoices = load_invoices(db, filters)
    logger.info(
        "Analytics %s..%s: %s timesheets, %s invoices",
        filters.start_date,
        filters.end_date,
        len(timesheets),
        len(invoices),
    )
    return AnalyticsReport(
        start_date=filters.start_date,
        end_date=filters.end_date,
        summary=summary(timesheets, invoices),
        revenue_trends=revenue_trends(invoices, filters),
        timesheet_trends=timesheet_trends(timesheets, filters),
        provider_productivity=provider_productivity(timesheets),
        client_billing=client_billing(invoices),
        invoice_status_distribution=_status_counts(
            (invoice.status for invoice in invoices), lambda status: status.replace("_", " ")
        ),
        financial_waterfall=financial_waterfall(invoices),
        insurance_comparisons=insurance_comparisons(db, invoices),
        timesheet_status_breakdown=_status_counts(
            (timesheet.status for timesheet in timesheets), lambda status: status.capitalize()
        ),
    )
