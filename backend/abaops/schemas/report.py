from __future__ import annotations

import datetime as dt
from datetime import date
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import Field

from abaops.models.enums import TimesheetStatus
from abaops.schemas.base import ORMModel


GroupBy = Literal["client", "provider", "insurance", "week", "timesheet"]


class DetailedReportFilters(ORMModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    provider_id: Optional[int] = None
    client_id: Optional[int] = None
    bcba_id: Optional[int] = None
    insurance_id: Optional[int] = None
    statuses: List[TimesheetStatus] = Field(default_factory=list)
    service_types: List[Literal["DR", "SV"]] = Field(default_factory=list)
    include_bcba: bool = False
    group_by: Optional[GroupBy] = None


class DetailedReportRow(ORMModel):
    date: dt.date
    timesheet_id: int
    timesheet_number: Optional[str] = None
    client_name: Optional[str] = None
    provider_name: Optional[str] = None
    bcba_name: Optional[str] = None
    insurance_name: Optional[str] = None
    service_type: Optional[str] = None
    time_in: str
    time_out: str
    hours: Decimal
    units: Decimal
    status: TimesheetStatus


class DetailedReportSummary(ORMModel):
    hours_dr: Decimal
    hours_sv: Decimal
    hours_total: Decimal
    units_total: Decimal
    units_dr: Decimal
    units_sv: Decimal
    session_count: int
    timesheet_count: int


class DetailedReportGroup(ORMModel):
    key: str
    label: str
    summary: DetailedReportSummary
    rows: List[DetailedReportRow]


class DetailedReport(ORMModel):
    rows: List[DetailedReportRow]
    summary: DetailedReportSummary
    groups: List[DetailedReportGroup] = Field(default_factory=list)
