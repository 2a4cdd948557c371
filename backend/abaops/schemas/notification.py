from __future__ import annotations

from datetime import datetime
from typing import Optional

from abaops.models.enums import NotificationType
from abaops.schemas.base import ORMModel


class NotificationRead(ORMModel):
    id: int
    user_id: int
    type: NotificationType
    title: str
    message: str
    payload_json: Optional[dict] = None
    read_at: Optional[datetime] = None
    is_read: bool
    created_at: datetime


class UnreadCount(ORMModel):
    unread: int
