from __future__ import annotations

from decimal import Decimal
from typing import Dict

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from abaops.core.rbac import dashboard_visibility, is_admin
from abaops.db.base import utcnow
from abaops.models.audit import ActivityLog, AuditLog
from abaops.models.enums import InvoiceStatus, TimesheetStatus
from abaops.models.invoice import Invoice
from abaops.models.timesheet import Timesheet
from abaops.models.user import User
from abaops.schemas.activity import ActivityLogRead, AuditLogRead
from abaops.schemas.dashboard import DashboardStats, InvoiceTotals
from abaops.schemas.timesheet import TimesheetSummary
from abaops.services.activity import LOGIN
from abaops.services.billing import ZERO, _q
from abaops.services.notifications import unread_count


RECENT_LIMIT = 10


def _timesheet_scope(db: Session, user: User):
    query = db.query(Timesheet).filter(Timesheet.not_deleted())
    if not is_admin(user):
        query = query.filter(Timesheet.user_id == user.id)
    return query


def timesheet_counts(db: Session, user: User) -> Dict[str, int]:
    counts = {status.value: 0 for status in TimesheetStatus}
    rows = (
        _timesheet_scope(db, user)
        .with_entities(Timesheet.status, func.count(Timesheet.id))
        .group_by(Timesheet.status)
        .all()
    )
    for status_value, count in rows:
        key = status_value.value if isinstance(status_value, TimesheetStatus) else str(status_value)
        counts[key] = count
    return counts


def invoice_totals(db: Session) -> InvoiceTotals:
    count, billed, paid, outstanding = (
        db.query(
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total_amount), 0),
            func.coalesce(func.sum(Invoice.paid_amount), 0),
            func.coalesce(func.sum(Invoice.outstanding), 0),
        )
        .filter(Invoice.not_deleted(), Invoice.status != InvoiceStatus.VOID)
        .one()
    )
    return InvoiceTotals(
        count=count or 0,
        billed=_q(Decimal(billed or ZERO)),
        paid=_q(Decimal(paid or ZERO)),
        outstanding=_q(Decimal(outstanding or ZERO)),
    )


def unread_activity_count(db: Session, user: User) -> int:
    query = db.query(AuditLog)
    if user.last_seen_activity_at is not None:
        query = query.filter(AuditLog.created_at > user.last_seen_activity_at)
    return query.count()


def mark_activity_seen(db: Session, user: User) -> User:
    user.last_seen_activity_at = utcnow()
    db.add(user)
    db.flush()
    return user


def build_stats(db: Session, user: User) -> DashboardStats:
    pending = (
        _timesheet_scope(db, user)
        .options(selectinload(Timesheet.provider), selectinload(Timesheet.client), selectinload(Timesheet.bcba))
        .filter(Timesheet.status == TimesheetStatus.SUBMITTED)
        .order_by(Timesheet.submitted_at.asc(), Timesheet.id.asc())
        .limit(RECENT_LIMIT)
        .all()
    )
    admin = is_admin(user)
    stats = DashboardStats(
        timesheets_by_status=timesheet_counts(db, user),
        pending_timesheets=[TimesheetSummary.model_validate(timesheet) for timesheet in pending],
        invoices=invoice_totals(db) if admin else InvoiceTotals(count=0, billed=ZERO, paid=ZERO, outstanding=ZERO),
        unread_notifications=unread_count(db, user_id=user.id),
        sections=dashboard_visibility(user),
    )
    if admin:
        audit_rows = (
            db.query(AuditLog)
            .options(selectinload(AuditLog.user))
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(RECENT_LIMIT)
            .all()
        )
        login_rows = (
            db.query(ActivityLog)
            .filter(ActivityLog.type == LOGIN)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
            .limit(RECENT_LIMIT)
            .all()
        )
        stats.recent_audit = [AuditLogRead.model_validate(row) for row in audit_rows]
        stats.recent_logins = [ActivityLogRead.model_validate(row) for row in login_rows]
        stats.unread_activity = unread_activity_count(db, user)
    return stats
