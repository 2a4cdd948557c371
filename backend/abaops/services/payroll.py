from __future__ import annotations

import csv
import io
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from abaops.db.base import utcnow
from abaops.models.enums import AuditAction, NotificationType, PayrollImportStatus, PayrollRunStatus
from abaops.models.payroll import (
    PayrollEmployee,
    PayrollImport,
    PayrollImportRow,
    PayrollPayment,
    PayrollRun,
    PayrollRunLine,
)
from abaops.models.user import User
from abaops.services.activity import log_audit
from abaops.services.billing import ZERO, _q
from abaops.services.notifications import notify_admins


logger = logging.getLogger(__name__)

MINUTES_PER_HOUR = Decimal(60)
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y")
TIME_12H = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])\s*$")
TIME_24H = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")
CSV_COLUMNS = {
    "employee": ("employee", "employee_name", "name"),
    "external_id": ("external_id", "employee_id", "id"),
    "date": ("date", "work_date"),
    "in": ("in", "in_time", "time_in"),
    "out": ("out", "out_time", "time_out"),
    "minutes": ("minutes", "minutes_worked"),
}


class PayrollError(ValueError):
    pass


@dataclass
class ParsedRow:
    employee_name: Optional[str]
    external_id: Optional[str]
    work_date: date
    in_time: Optional[str]
    out_time: Optional[str]
    minutes: int


@dataclass
class HoursSplit:
    total_minutes: int
    total_hours: Decimal
    regular_hours: Decimal
    overtime_hours: Decimal


def parse_clock(value: Optional[str]) -> Optional[str]:
    """Normalize ``9:05 PM`` or ``21:05`` to ``21:05``."""
    if not value or not value.strip():
        return None
    match = TIME_12H.match(value)
    if match:
        hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3).upper()
        if not 1 <= hour <= 12 or minute > 59:
            raise PayrollError(f"Invalid time: {value}")
        hour = hour % 12 + (12 if meridiem == "PM" else 0)
        return f"{hour:02d}:{minute:02d}"
    match = TIME_24H.match(value)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise PayrollError(f"Invalid time: {value}")
        return f"{hour:02d}:{minute:02d}"
    raise PayrollError(f"Invalid time: {value}")


def minutes_between(in_time: Optional[str], out_time: Optional[str]) -> int:
    if not in_time or not out_time:
        return 0
    start_h, start_m = (int(part) for part in in_time.split(":"))
    end_h, end_m = (int(part) for part in out_time.split(":"))
    minutes = (end_h * 60 + end_m) - (start_h * 60 + start_m)
    if minutes < 0:
        minutes += 24 * 60
    return minutes


def parse_work_date(value: str) -> date:
    raw = (value or "").strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    raise PayrollError(f"Invalid date: {value}")


def _column(header: Sequence[str], key: str) -> Optional[int]:
    normalized = [name.strip().lower() for name in header]
    for alias in CSV_COLUMNS[key]:
        if alias in normalized:
            return normalized.index(alias)
    return None


def parse_csv(content: str) -> List[ParsedRow]:
    """Rows of an ``employee,external_id,date,in,out[,minutes]`` export."""
    reader = csv.reader(io.StringIO(content))
    try:
        header = next(reader)
    except StopIteration as exc:
        raise PayrollError("CSV file is empty") from exc
    columns = {key: _column(header, key) for key in CSV_COLUMNS}
    if columns["date"] is None:
        raise PayrollError("CSV is missing a date column")
    if columns["employee"] is None and columns["external_id"] is None:
        raise PayrollError("CSV needs an employee or external_id column")

    def cell(row: List[str], key: str) -> Optional[str]:
        index = columns[key]
        if index is None or index >= len(row):
            return None
        value = row[index].strip()
        return value or None

    parsed: List[ParsedRow] = []
    for line_number, row in enumerate(reader, start=2):
        if not any(part.strip() for part in row):
            continue
        try:
            in_time = parse_clock(cell(row, "in"))
            out_time = parse_clock(cell(row, "out"))
            raw_minutes = cell(row, "minutes")
            minutes = int(float(raw_minutes)) if raw_minutes else minutes_between(in_time, out_time)
            parsed.append(
                ParsedRow(
                    employee_name=cell(row, "employee"),
                    external_id=cell(row, "external_id"),
                    work_date=parse_work_date(cell(row, "date") or ""),
                    in_time=in_time,
                    out_time=out_time,
                    minutes=max(minutes, 0),
                )
            )
        except (PayrollError, ValueError) as exc:
            raise PayrollError(f"Line {line_number}: {exc}") from exc
    if not parsed:
        raise PayrollError("CSV contains no rows")
    return parsed


def rows_from_payload(rows: Iterable) -> List[ParsedRow]:
    parsed = []
    for row in rows:
        in_time = parse_clock(row.in_time)
        out_time = parse_clock(row.out_time)
        minutes = row.minutes if row.minutes is not None else minutes_between(in_time, out_time)
        parsed.append(
            ParsedRow(
                employee_name=row.employee_name,
                external_id=row.external_id,
                work_date=row.work_date,
                in_time=in_time,
                out_time=out_time,
                minutes=minutes,
            )
        )
    return parsed


def match_employee(
    employees: Sequence[PayrollEmployee],
    *,
    external_id: Optional[str],
    name: Optional[str],
) -> Optional[PayrollEmployee]:
    if external_id:
        wanted = external_id.strip().lower()
        for employee in employees:
            if employee.scanner_external_id and employee.scanner_external_id.strip().lower() == wanted:
                return employee
    if name:
        wanted = " ".join(name.split()).lower()
        for employee in employees:
            if " ".join(employee.full_name.split()).lower() == wanted:
                return employee
    return None


def create_import(
    db: Session,
    *,
    rows: Sequence[ParsedRow],
    user: User,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    original_file_name: Optional[str] = None,
) -> PayrollImport:
    if not rows:
        raise PayrollError("Import has no rows")
    dates = [row.work_date for row in rows]
    period_start = period_start or min(dates)
    period_end = period_end or max(dates)
    if period_end < period_start:
        raise PayrollError("Period end must be on or after period start")

    employees = db.query(PayrollEmployee).filter(PayrollEmployee.not_deleted(), PayrollEmployee.active.is_(True)).all()
    payroll_import = PayrollImport(
        original_file_name=original_file_name,
        period_start=period_start,
        period_end=period_end,
        status=PayrollImportStatus.DRAFT,
        row_count=len(rows),
        created_by_user_id=user.id,
    )
    linked = 0
    for row in rows:
        employee = match_employee(employees, external_id=row.external_id, name=row.employee_name)
        if employee:
            linked += 1
        payroll_import.rows.append(
            PayrollImportRow(
                employee_name_raw=row.employee_name,
                employee_external_id_raw=row.external_id,
                work_date=row.work_date,
                in_time=row.in_time,
                out_time=row.out_time,
                minutes_worked=row.minutes,
                hours_worked=_q(Decimal(row.minutes) / MINUTES_PER_HOUR),
                linked_employee_id=employee.id if employee else None,
            )
        )
    db.add(payroll_import)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="PayrollImport",
        entity_id=payroll_import.id,
        user_id=user.id,
        metadata={"row_count": len(rows), "linked_rows": linked, "file": original_file_name},
    )
    logger.info("Payroll import %s created: rows=%s linked=%s", payroll_import.id, len(rows), linked)
    return payroll_import


def link_row(db: Session, *, row: PayrollImportRow, employee_id: Optional[int]) -> PayrollImportRow:
    if employee_id is not None:
        employee = db.get(PayrollEmployee, employee_id)
        if not employee or employee.deleted_at is not None:
            raise PayrollError("Employee not found")
    row.linked_employee_id = employee_id
    db.add(row)
    db.flush()
    return row


def delete_import(db: Session, *, payroll_import: PayrollImport, user: User) -> None:
    in_use = db.query(PayrollRun.id).filter(PayrollRun.source_import_id == payroll_import.id).first()
    if in_use:
        raise PayrollError("Import is used by a payroll run")
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="PayrollImport",
        entity_id=payroll_import.id,
        user_id=user.id,
        metadata={"row_count": payroll_import.row_count},
    )
    db.delete(payroll_import)
    db.flush()


def split_hours(
    minutes_by_day: Iterable[Tuple[date, int]],
    *,
    overtime_after_hours: Decimal,
) -> HoursSplit:
    """Regular/overtime split with the threshold applied per ISO week."""
    weekly: Dict[Tuple[int, int], int] = defaultdict(int)
    total_minutes = 0
    for work_date, minutes in minutes_by_day:
        iso = work_date.isocalendar()
        weekly[(iso[0], iso[1])] += minutes
        total_minutes += minutes
    threshold = Decimal(overtime_after_hours)
    regular = Decimal("0")
    overtime = Decimal("0")
    for minutes in weekly.values():
        hours = Decimal(minutes) / MINUTES_PER_HOUR
        regular += min(hours, threshold)
        overtime += max(hours - threshold, Decimal("0"))
    return HoursSplit(
        total_minutes=total_minutes,
        total_hours=_q(Decimal(total_minutes) / MINUTES_PER_HOUR),
        regular_hours=_q(regular),
        overtime_hours=_q(overtime),
    )


def gross_pay(split: HoursSplit, *, rate: Decimal, multiplier: Decimal) -> Decimal:
    rate = Decimal(rate)
    return _q(split.regular_hours * rate + split.overtime_hours * rate * Decimal(multiplier))


def recompute_run_totals(run: PayrollRun) -> PayrollRun:
    run.total_gross = _q(sum((line.gross_pay for line in run.lines), ZERO))
    run.total_paid = _q(sum((line.amount_paid for line in run.lines), ZERO))
    run.total_owed = _q(sum((line.amount_owed for line in run.lines), ZERO))
    return run


def _row_minutes(row: PayrollImportRow) -> int:
    if row.minutes_worked:
        return row.minutes_worked
    return int(Decimal(row.hours_worked or 0) * MINUTES_PER_HOUR)


def create_run(db: Session, *, payload, user: User) -> PayrollRun:
    payroll_import = db.get(PayrollImport, payload.source_import_id)
    if not payroll_import:
        raise PayrollError("Import not found")

    query = (
        db.query(PayrollImportRow)
        .options(selectinload(PayrollImportRow.linked_employee))
        .filter(
            PayrollImportRow.import_id == payroll_import.id,
            PayrollImportRow.linked_employee_id.is_not(None),
            PayrollImportRow.work_date >= payroll_import.period_start,
            PayrollImportRow.work_date <= payroll_import.period_end,
        )
    )
    if payload.selected_employee_ids:
        query = query.filter(PayrollImportRow.linked_employee_id.in_(payload.selected_employee_ids))
    rows = query.all()
    if not rows:
        raise PayrollError("No linked import rows found for the selected employees")

    by_employee: Dict[int, List[PayrollImportRow]] = defaultdict(list)
    for row in rows:
        by_employee[row.linked_employee_id].append(row)

    run = PayrollRun(
        name=payload.name.strip(),
        period_start=payroll_import.period_start,
        period_end=payroll_import.period_end,
        status=PayrollRunStatus.DRAFT,
        source_import_id=payroll_import.id,
        created_by_user_id=user.id,
    )
    for employee_id, employee_rows in sorted(by_employee.items()):
        employee = employee_rows[0].linked_employee
        rate = Decimal(payload.employee_rates.get(employee_id, employee.default_hourly_rate))
        split = split_hours(
            ((row.work_date, _row_minutes(row)) for row in employee_rows),
            overtime_after_hours=employee.overtime_after_hours,
        )
        pay = gross_pay(split, rate=rate, multiplier=employee.overtime_rate_multiplier)
        run.lines.append(
            PayrollRunLine(
                employee_id=employee_id,
                hourly_rate_used=_q(rate),
                total_minutes=split.total_minutes,
                total_hours=split.total_hours,
                regular_hours=split.regular_hours,
                overtime_hours=split.overtime_hours,
                gross_pay=pay,
                amount_paid=ZERO,
                amount_owed=pay,
            )
        )
    recompute_run_totals(run)
    payroll_import.status = PayrollImportStatus.FINALIZED
    db.add(payroll_import)
    db.add(run)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="PayrollRun",
        entity_id=run.id,
        user_id=user.id,
        metadata={"source_import_id": payroll_import.id, "employees": len(run.lines), "total_gross": run.total_gross},
    )
    notify_admins(
        db,
        notif_type=NotificationType.PAYROLL_RUN,
        title="Payroll run created",
        message=f"Payroll run {run.name} created for {len(run.lines)} employee(s).",
        payload={"payroll_run_id": run.id},
        exclude_user_ids=[user.id],
    )
    return run


def approve_run(db: Session, *, run: PayrollRun, user: User) -> PayrollRun:
    if run.status != PayrollRunStatus.DRAFT:
        raise PayrollError("Only draft payroll runs can be approved")
    run.status = PayrollRunStatus.APPROVED
    run.approved_at = utcnow()
    run.approved_by_user_id = user.id
    db.add(run)
    db.flush()
    log_audit(db, action=AuditAction.APPROVE, entity_type="PayrollRun", entity_id=run.id, user_id=user.id)
    return run


def delete_run(db: Session, *, run: PayrollRun, user: User) -> None:
    if run.status != PayrollRunStatus.DRAFT:
        raise PayrollError("Only draft payroll runs can be deleted")
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="PayrollRun",
        entity_id=run.id,
        user_id=user.id,
        metadata={"name": run.name, "total_gross": run.total_gross},
    )
    db.delete(run)
    db.flush()


def record_payment(db: Session, *, run: PayrollRun, line: PayrollRunLine, payload, user: User) -> PayrollPayment:
    if line.run_id != run.id:
        raise PayrollError("Line does not belong to this payroll run")
    amount = _q(Decimal(payload.amount))
    if amount <= 0:
        raise PayrollError("Payment amount must be greater than zero")
    if amount > line.amount_owed:
        raise PayrollError(f"Payment exceeds amount owed ({line.amount_owed})")
    payment = PayrollPayment(
        run_line_id=line.id,
        amount=amount,
        payment_date=payload.payment_date,
        method=payload.method,
        reference=payload.reference,
        notes=payload.notes,
        created_by_user_id=user.id,
    )
    line.payments.append(payment)
    line.amount_paid = _q(line.amount_paid + amount)
    line.amount_owed = _q(line.gross_pay - line.amount_paid)
    db.add(line)
    recompute_run_totals(run)
    run.status = PayrollRunStatus.PAID if run.total_owed <= 0 else PayrollRunStatus.PAID_PARTIAL
    db.add(run)
    db.flush()
    log_audit(
        db,
        action=AuditAction.PAYMENT,
        entity_type="PayrollRun",
        entity_id=run.id,
        user_id=user.id,
        metadata={"line_id": line.id, "employee_id": line.employee_id, "amount": amount, "status": run.status},
    )
    return payment


def run_lines_csv(run: PayrollRun) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        [
            "Employee",
            "Hourly Rate",
            "Total Hours",
            "Regular Hours",
            "Overtime Hours",
            "Gross Pay",
            "Amount Paid",
            "Amount Owed",
        ]
    )
    for line in run.lines:
        writer.writerow(
            [
                line.employee_name or "",
                line.hourly_rate_used,
                line.total_hours,
                line.regular_hours,
                line.overtime_hours,
                line.gross_pay,
                line.amount_paid,
                line.amount_owed,
            ]
        )
    writer.writerow(["Totals", "", "", "", "", run.total_gross, run.total_paid, run.total_owed])
    return buffer.getvalue()


def employee_name_taken(db: Session, name: str, *, exclude_id: Optional[int] = None) -> bool:
    query = db.query(PayrollEmployee.id).filter(
        func.lower(PayrollEmployee.full_name) == name.strip().lower(),
        PayrollEmployee.not_deleted(),
    )
    if exclude_id is not None:
        query = query.filter(PayrollEmployee.id != exclude_id)
    return query.first() is not None
