from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from abaops.models.enums import InvoiceStatus, TimesheetStatus
from abaops.schemas.base import ORMModel


class TimesheetHit(ORMModel):
    id: int
    timesheet_number: Optional[str] = None
    is_bcba: bool
    status: TimesheetStatus
    start_date: date
    end_date: date
    client: Optional[str] = None
    provider: Optional[str] = None
    bcba: Optional[str] = None
    invoice_id: Optional[int] = None


class InvoiceHit(ORMModel):
    id: int
    invoice_number: str
    client: Optional[str] = None
    status: InvoiceStatus
    total_amount: Decimal
    start_date: date
    end_date: date


class SearchResult(ORMModel):
    kind: str
    timesheet: Optional[TimesheetHit] = None
    invoice: Optional[InvoiceHit] = None
    timesheets: List[TimesheetHit] = Field(default_factory=list)
    message: str
