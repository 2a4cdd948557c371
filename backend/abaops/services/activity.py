from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from abaops.core.settings import settings
from abaops.db.base import ensure_aware, utcnow
from abaops.models.audit import ActivityLog, AuditLog
from abaops.models.enums import AuditAction
from abaops.models.user import User


logger = logging.getLogger(__name__)

LOGIN = "LOGIN"


def log_activity(
    db: Session,
    *,
    actor_user_id: Optional[int],
    activity_type: str,
    message: Optional[str] = None,
    payload: Optional[dict] = None,
    actor: Optional[User] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ActivityLog:
    activity = ActivityLog(
        actor_user_id=actor_user_id,
        actor_email=actor.email if actor else None,
        actor_role=actor.role if actor else None,
        type=activity_type,
        message=message,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500] or None,
        payload_json=payload,
    )
    db.add(activity)
    db.flush()
    return activity


def record_login(
    db: Session,
    *,
    user: User,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Optional[ActivityLog]:
    """Write a LOGIN activity unless one was written for ``user`` within the dedupe window."""
    now = utcnow()
    user.last_login_at = now
    db.add(user)
    cutoff = now - timedelta(seconds=settings.login_dedupe_seconds)
    latest = (
        db.query(ActivityLog)
        .filter(ActivityLog.actor_user_id == user.id, ActivityLog.type == LOGIN)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .first()
    )
    if latest and ensure_aware(latest.created_at) >= cutoff:
        db.flush()
        return None
    return log_activity(
        db,
        actor_user_id=user.id,
        actor=user,
        activity_type=LOGIN,
        message=f"{user.email} signed in",
        ip_address=ip_address,
        user_agent=user_agent,
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def snapshot(obj, fields: Iterable[str]) -> dict:
    return {name: _jsonable(getattr(obj, name, None)) for name in fields}


def log_audit(
    db: Session,
    *,
    action: AuditAction,
    entity_type: str,
    entity_id: int | str,
    user_id: Optional[int],
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    metadata: Optional[dict] = None,
) -> AuditLog:
    entry = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        user_id=user_id,
        old_values=_jsonable(old_values) if old_values else None,
        new_values=_jsonable(new_values) if new_values else None,
        metadata_json=_jsonable(metadata) if metadata else None,
    )
    db.add(entry)
    db.flush()
    logger.debug("audit %s %s:%s", action.value, entity_type, entity_id)
    return entry
