from __future__ import annotations

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from abaops.models.enums import PayrollPaidStatus
from abaops.models.payroll import PayrollEmployee, PayrollPayment, PayrollRun, PayrollRunLine
from abaops.schemas.payroll import (
    PayrollAnalytics,
    PayrollEmployeeBalance,
    PayrollEmployeeCounts,
    PayrollPaymentPoint,
    PayrollWaterfallStep,
)
from abaops.services.billing import ZERO, _q


logger = logging.getLogger(__name__)

RUN_LIMIT = 100
TOP_EMPLOYEES = 10


def line_paid_status(line: PayrollRunLine) -> PayrollPaidStatus:
    if line.amount_owed <= 0:
        return PayrollPaidStatus.PAID
    if line.amount_paid > 0:
        return PayrollPaidStatus.PARTIAL
    return PayrollPaidStatus.UNPAID


def _filtered_lines(
    db: Session,
    *,
    date_start: Optional[date],
    date_end: Optional[date],
    run_id: Optional[int],
    employee_id: Optional[int],
    paid_status: Optional[PayrollPaidStatus],
) -> List[PayrollRunLine]:
    query = db.query(PayrollRun).options(
        selectinload(PayrollRun.lines).selectinload(PayrollRunLine.employee),
        selectinload(PayrollRun.lines).selectinload(PayrollRunLine.payments),
    )
    if date_start:
        query = query.filter(PayrollRun.period_start >= date_start)
    if date_end:
        query = query.filter(PayrollRun.period_end <= date_end)
    if run_id:
        query = query.filter(PayrollRun.id == run_id)
    runs = query.order_by(PayrollRun.period_start.desc(), PayrollRun.id.desc()).limit(RUN_LIMIT).all()
    lines = [line for run in runs for line in run.lines]
    if employee_id:
        lines = [line for line in lines if line.employee_id == employee_id]
    if paid_status:
        lines = [line for line in lines if line_paid_status(line) == paid_status]
    return lines


def payroll_analytics(
    db: Session,
    *,
    date_start: Optional[date] = None,
    date_end: Optional[date] = None,
    run_id: Optional[int] = None,
    employee_id: Optional[int] = None,
    paid_status: Optional[PayrollPaidStatus] = None,
) -> PayrollAnalytics:
    lines = _filtered_lines(
        db,
        date_start=date_start,
        date_end=date_end,
        run_id=run_id,
        employee_id=employee_id,
        paid_status=paid_status,
    )
    total_gross = _q(sum((line.gross_pay for line in lines), ZERO))
    total_paid = _q(sum((line.amount_paid for line in lines), ZERO))
    total_owed = _q(sum((line.amount_owed for line in lines), ZERO))

    employees_by_status: Dict[PayrollPaidStatus, set] = defaultdict(set)
    payments_by_date: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    balances: Dict[int, dict] = {}
    for line in lines:
        employees_by_status[line_paid_status(line)].add(line.employee_id)
        for payment in line.payments:
            payments_by_date[payment.payment_date] += payment.amount
        balance = balances.setdefault(
            line.employee_id, {"name": line.employee_name or "Unknown", "owed": ZERO, "paid": ZERO}
        )
        balance["owed"] += line.amount_owed
        balance["paid"] += line.amount_paid

    counts = {status: len(employees_by_status[status]) for status in PayrollPaidStatus}
    ranked = sorted(balances.items(), key=lambda item: item[1]["owed"], reverse=True)[:TOP_EMPLOYEES]
    return PayrollAnalytics(
        total_gross=total_gross,
        total_paid=total_paid,
        total_owed=total_owed,
        employee_count=PayrollEmployeeCounts(
            unpaid=counts[PayrollPaidStatus.UNPAID],
            partial=counts[PayrollPaidStatus.PARTIAL],
            paid=counts[PayrollPaidStatus.PAID],
            total=sum(counts.values()),
        ),
        payments_over_time=[
            PayrollPaymentPoint(date=day, amount=_q(amount)) for day, amount in sorted(payments_by_date.items())
        ],
        owed_vs_paid_by_employee=[
            PayrollEmployeeBalance(employee_id=key, name=row["name"], owed=_q(row["owed"]), paid=_q(row["paid"]))
            for key, row in ranked
        ],
        waterfall=[
            PayrollWaterfallStep(category="Gross Total", value=total_gross),
            PayrollWaterfallStep(category="Paid", value=total_paid),
            PayrollWaterfallStep(category="Remaining Owed", value=total_owed),
        ],
    )


@dataclass
class RunBreakdown:
    run_name: str
    period_start: date
    period_end: date
    hours: Decimal
    rate: Decimal
    gross: Decimal
    paid: Decimal
    owed: Decimal


@dataclass
class EmployeeMonthReport:
    employee: PayrollEmployee
    year: int
    month: int
    total_hours: Decimal = ZERO
    hourly_rate: Decimal = ZERO
    gross_pay: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_owed: Decimal = ZERO
    runs: List[RunBreakdown] = field(default_factory=list)
    payments: List[PayrollPayment] = field(default_factory=list)

    @property
    def month_name(self) -> str:
        return calendar.month_name[self.month]

    @property
    def filename(self) -> str:
        safe_name = "".join(char if char.isalnum() else "_" for char in self.employee.full_name)
        return f"employee-report-{safe_name}-{self.month}-{self.year}.pdf"


def employee_month_report(db: Session, *, employee: PayrollEmployee, year: int, month: int) -> EmployeeMonthReport:
    """Summarise every run line whose run period overlaps the given month."""
    if month < 1 or month > 12:
        raise ValueError("Invalid month")
    first = date(year, month, 1)
    last = date(year, month, calendar.monthrange(year, month)[1])
    lines = (
        db.query(PayrollRunLine)
        .join(PayrollRun, PayrollRunLine.run_id == PayrollRun.id)
        .options(selectinload(PayrollRunLine.run), selectinload(PayrollRunLine.payments))
        .filter(
            PayrollRunLine.employee_id == employee.id,
            PayrollRun.period_start <= last,
            PayrollRun.period_end >= first,
        )
        .order_by(PayrollRun.period_start.asc(), PayrollRun.id.asc())
        .all()
    )
    report = EmployeeMonthReport(employee=employee, year=year, month=month)
    for line in lines:
        report.runs.append(
            RunBreakdown(
                run_name=line.run.name,
                period_start=line.run.period_start,
                period_end=line.run.period_end,
                hours=line.total_hours,
                rate=line.hourly_rate_used,
                gross=line.gross_pay,
                paid=line.amount_paid,
                owed=line.amount_owed,
            )
        )
        report.payments.extend(line.payments)
    report.total_hours = _q(sum((run.hours for run in report.runs), ZERO))
    report.gross_pay = _q(sum((run.gross for run in report.runs), ZERO))
    report.total_paid = _q(sum((run.paid for run in report.runs), ZERO))
    report.total_owed = _q(sum((run.owed for run in report.runs), ZERO))
    if report.runs:
        report.hourly_rate = _q(sum((run.rate for run in report.runs), ZERO) / len(report.runs))
    else:
        report.hourly_rate = _q(employee.default_hourly_rate)
    report.payments.sort(key=lambda payment: (payment.payment_date, payment.id))
    logger.info("Built %s %s report for employee %s: %s run(s)", report.month_name, year, employee.id, len(report.runs))
    return report
