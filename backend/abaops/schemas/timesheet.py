from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from abaops.models.enums import TimesheetStatus
from abaops.schemas.base import ORMModel


class TimesheetEntryIn(ORMModel):
    date: dt.date
    start_time: str
    end_time: str
    minutes: int
    notes: Optional[Literal["DR", "SV"]] = None

    @field_validator("notes", mode="before")
    @classmethod
    def blank_notes(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class TimesheetEntryRead(ORMModel):
    id: int
    date: dt.date
    start_time: str
    end_time: str
    minutes: int
    units: Decimal
    notes: Optional[str] = None
    invoiced: bool


class TimesheetCreate(ORMModel):
    is_bcba: bool = False
    provider_id: Optional[int] = None
    client_id: Optional[int] = None
    bcba_id: Optional[int] = None
    insurance_id: Optional[int] = None
    bcba_insurance_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    timezone: str = "America/New_York"
    service_type: Optional[str] = None
    session_data: Optional[dict] = None
    entries: List[TimesheetEntryIn] = Field(default_factory=list)


class TimesheetUpdate(TimesheetCreate):
    pass


class TimesheetRead(ORMModel):
    id: int
    timesheet_number: Optional[str] = None
    user_id: int
    provider_id: int
    provider_name: Optional[str] = None
    client_id: int
    client_name: Optional[str] = None
    bcba_id: int
    bcba_name: Optional[str] = None
    insurance_id: Optional[int] = None
    bcba_insurance_id: Optional[int] = None
    is_bcba: bool
    start_date: date
    end_date: date
    timezone: str
    service_type: Optional[str] = None
    session_data: Optional[dict] = None
    status: TimesheetStatus
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    queued_at: Optional[datetime] = None
    emailed_at: Optional[datetime] = None
    archived: bool
    invoiced_at: Optional[datetime] = None
    invoice_id: Optional[int] = None
    total_minutes: int = 0
    entries: List[TimesheetEntryRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class TimesheetSummary(ORMModel):
    id: int
    timesheet_number: Optional[str] = None
    is_bcba: bool
    provider_name: Optional[str] = None
    client_name: Optional[str] = None
    bcba_name: Optional[str] = None
    start_date: date
    end_date: date
    status: TimesheetStatus


class TimesheetReject(ORMModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class TimesheetIdsPayload(ORMModel):
    ids: List[int] = Field(..., min_length=1)


class ConflictingEntryRead(ORMModel):
    timesheet_id: int
    timesheet_number: Optional[str] = None
    entry_id: int
    start_time: str
    end_time: str
    entry_type: str


class OverlapConflictRead(ORMModel):
    code: str = "OVERLAP_CONFLICT"
    date: str
    start_time: str
    end_time: str
    entry_type: str
    scope: str
    provider: dict
    client: dict
    conflicting: Optional[ConflictingEntryRead] = None
    message: str


class OverlapCheckResponse(ORMModel):
    has_conflicts: bool
    conflicts: List[OverlapConflictRead] = Field(default_factory=list)


class BatchArchiveResponse(ORMModel):
    archived: int


class BatchInvoiceResponse(ORMModel):
    invoices_created: int
    invoice_ids: List[int] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class TimesheetActionResponse(ORMModel):
    ok: bool = True
    data: TimesheetRead
