from __future__ import annotations

import csv
import io
from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy.orm import Session, selectinload

from abaops.models.master import Client
from abaops.models.timesheet import Timesheet, TimesheetEntry
from abaops.schemas.report import (
    DetailedReport,
    DetailedReportFilters,
    DetailedReportGroup,
    DetailedReportRow,
    DetailedReportSummary,
)
from abaops.services.billing import ZERO, _q
from abaops.services.timesheets import format_time_12h


CSV_HEADERS = [
    "Date",
    "Timesheet",
    "Client",
    "Provider",
    "BCBA",
    "Insurance",
    "Type",
    "Time In",
    "Time Out",
    "Hours",
    "Units",
    "Status",
]


def _insurance_name(timesheet: Timesheet):
    if timesheet.insurance is not None:
        return timesheet.insurance.name
    if timesheet.client is not None:
        return timesheet.client.insurance_name
    return None


def _query(db: Session, filters: DetailedReportFilters):
    query = (
        db.query(Timesheet)
        .options(
            selectinload(Timesheet.entries),
            selectinload(Timesheet.provider),
            selectinload(Timesheet.client).selectinload(Client.insurance),
            selectinload(Timesheet.bcba),
            selectinload(Timesheet.insurance),
        )
        .filter(Timesheet.not_deleted())
    )
    if not filters.include_bcba:
        query = query.filter(Timesheet.is_bcba.is_(False))
    if filters.start_date:
        query = query.filter(Timesheet.end_date >= filters.start_date)
    if filters.end_date:
        query = query.filter(Timesheet.start_date <= filters.end_date)
    if filters.provider_id:
        query = query.filter(Timesheet.provider_id == filters.provider_id)
    if filters.client_id:
        query = query.filter(Timesheet.client_id == filters.client_id)
    if filters.bcba_id:
        query = query.filter(Timesheet.bcba_id == filters.bcba_id)
    if filters.insurance_id:
        query = query.filter(Timesheet.insurance_id == filters.insurance_id)
    if filters.statuses:
        query = query.filter(Timesheet.status.in_(filters.statuses))
    return query.order_by(Timesheet.start_date.asc(), Timesheet.id.asc())


def _entry_selected(entry: TimesheetEntry, filters: DetailedReportFilters) -> bool:
    if filters.start_date and entry.date < filters.start_date:
        return False
    if filters.end_date and entry.date > filters.end_date:
        return False
    if filters.service_types and entry.notes not in filters.service_types:
        return False
    return True


def summarize(rows: List[DetailedReportRow]) -> DetailedReportSummary:
    hours = {"DR": Decimal("0"), "SV": Decimal("0")}
    units = {"DR": ZERO, "SV": ZERO}
    hours_total = Decimal("0")
    units_total = ZERO
    for row in rows:
        hours_total += row.hours
        units_total += row.units
        if row.service_type in hours:
            hours[row.service_type] += row.hours
            units[row.service_type] += row.units
    return DetailedReportSummary(
        hours_dr=_q(hours["DR"]),
        hours_sv=_q(hours["SV"]),
        hours_total=_q(hours_total),
        units_total=_q(units_total),
        units_dr=_q(units["DR"]),
        units_sv=_q(units["SV"]),
        session_count=len(rows),
        timesheet_count=len({row.timesheet_id for row in rows}),
    )


def _group_key(row: DetailedReportRow, group_by: str) -> Tuple[str, str]:
    if group_by == "client":
        return row.client_name or "-", row.client_name or "Unknown client"
    if group_by == "provider":
        return row.provider_name or "-", row.provider_name or "Unknown provider"
    if group_by == "insurance":
        return row.insurance_name or "-", row.insurance_name or "Unknown insurance"
    if group_by == "week":
        monday = row.date - timedelta(days=row.date.weekday())
        return monday.isoformat(), f"Week of {monday.month}/{monday.day}/{monday.year}"
    return str(row.timesheet_id), row.timesheet_number or f"Timesheet {row.timesheet_id}"


def build_detailed_report(db: Session, filters: DetailedReportFilters) -> DetailedReport:
    keyed: List[Tuple[tuple, DetailedReportRow]] = []
    for timesheet in _query(db, filters).all():
        insurance_name = _insurance_name(timesheet)
        for entry in timesheet.entries:
            if not _entry_selected(entry, filters):
                continue
            keyed.append(
                (
                    (entry.date, timesheet.client_name or "", entry.start_time),
                    DetailedReportRow(
                        date=entry.date,
                        timesheet_id=timesheet.id,
                        timesheet_number=timesheet.timesheet_number,
                        client_name=timesheet.client_name,
                        provider_name=timesheet.provider_name,
                        bcba_name=timesheet.bcba_name,
                        insurance_name=insurance_name,
                        service_type=entry.notes,
                        time_in=format_time_12h(entry.start_time),
                        time_out=format_time_12h(entry.end_time),
                        hours=_q(Decimal(entry.minutes) / Decimal(60)),
                        units=_q(Decimal(entry.units or 0)),
                        status=timesheet.status,
                    ),
                )
            )
    keyed.sort(key=lambda item: item[0])
    rows = [row for _, row in keyed]

    groups: List[DetailedReportGroup] = []
    if filters.group_by:
        grouped: "OrderedDict[str, Tuple[str, List[DetailedReportRow]]]" = OrderedDict()
        for row in rows:
            key, label = _group_key(row, filters.group_by)
            grouped.setdefault(key, (label, []))[1].append(row)
        for key, (label, group_rows) in sorted(grouped.items(), key=lambda item: item[1][0]):
            groups.append(DetailedReportGroup(key=key, label=label, summary=summarize(group_rows), rows=group_rows))

    return DetailedReport(rows=rows, summary=summarize(rows), groups=groups)


def detailed_report_csv(report: DetailedReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for row in report.rows:
        writer.writerow(
            [
                row.date.isoformat(),
                row.timesheet_number or "",
                row.client_name or "",
                row.provider_name or "",
                row.bcba_name or "",
                row.insurance_name or "",
                row.service_type or "",
                row.time_in,
                row.time_out,
                row.hours,
                row.units,
                row.status.value,
            ]
        )
    summary = report.summary
    writer.writerow([])
    writer.writerow(["Total hours", summary.hours_total, "DR hours", summary.hours_dr, "SV hours", summary.hours_sv])
    writer.writerow(["Total units", summary.units_total, "DR units", summary.units_dr, "SV units", summary.units_sv])
    writer.writerow(["Sessions", summary.session_count, "Timesheets", summary.timesheet_count])
    return buffer.getvalue()
