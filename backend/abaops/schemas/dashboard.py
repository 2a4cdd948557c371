from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import Field

from abaops.models.enums import ScheduledJobType
from abaops.schemas.activity import ActivityLogRead, AuditLogRead
from abaops.schemas.base import ORMModel
from abaops.schemas.timesheet import TimesheetSummary


class InvoiceTotals(ORMModel):
    count: int
    billed: Decimal
    paid: Decimal
    outstanding: Decimal


class DashboardStats(ORMModel):
    timesheets_by_status: Dict[str, int]
    pending_timesheets: List[TimesheetSummary] = Field(default_factory=list)
    invoices: InvoiceTotals
    unread_notifications: int
    recent_audit: List[AuditLogRead] = Field(default_factory=list)
    recent_logins: List[ActivityLogRead] = Field(default_factory=list)
    unread_activity: int = 0
    sections: Dict[str, bool] = Field(default_factory=dict)


class ActivityFeed(ORMModel):
    items: List[AuditLogRead]
    unread: int


class ScheduledJobRead(ORMModel):
    id: int
    job_type: ScheduledJobType
    schedule: str
    timezone: str
    active: bool
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    metadata_json: Optional[dict] = None
