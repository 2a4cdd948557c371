from __future__ import annotations

from datetime import datetime
from typing import Optional

from abaops.models.enums import AuditAction, Role
from abaops.schemas.base import ORMModel


class ActivityLogRead(ORMModel):
    id: int
    actor_user_id: Optional[int] = None
    actor_email: Optional[str] = None
    actor_role: Optional[Role] = None
    type: str
    message: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    payload_json: Optional[dict] = None
    created_at: datetime


class AuditLogRead(ORMModel):
    id: int
    action: AuditAction
    entity_type: str
    entity_id: str
    user_id: Optional[int] = None
    user_email: Optional[str] = None
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    metadata_json: Optional[dict] = None
    created_at: datetime
