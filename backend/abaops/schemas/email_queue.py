from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from abaops.models.enums import EmailQueueContext, EmailQueueEntityType, EmailQueueStatus
from abaops.schemas.base import ORMModel
from abaops.schemas.timesheet import TimesheetSummary


class EmailQueueItemRead(ORMModel):
    id: int
    entity_type: EmailQueueEntityType
    entity_id: int
    context: EmailQueueContext
    status: EmailQueueStatus
    queued_by_user_id: Optional[int] = None
    queued_at: datetime
    scheduled_send_at: Optional[datetime] = None
    batch_id: Optional[str] = None
    recipient_email: Optional[str] = None
    attempts: int
    sent_at: Optional[datetime] = None
    last_error: Optional[str] = None
    error_message: Optional[str] = None


class EmailQueueRow(EmailQueueItemRead):
    timesheet: Optional[TimesheetSummary] = None


class EmailQueueIds(ORMModel):
    ids: List[int] = Field(..., min_length=1)


class BatchSendResult(ORMModel):
    success: bool
    sent: int
    failed: int
    batch_id: Optional[str] = None
    message: str
    errors: List[str] = Field(default_factory=list)
    scheduled: int = 0
    scheduled_send_at: Optional[datetime] = None


class BulkDeleteResult(ORMModel):
    deleted: int
