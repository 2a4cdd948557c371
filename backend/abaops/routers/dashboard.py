from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, selectinload

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.db.session import get_db
from abaops.models.audit import AuditLog
from abaops.models.user import User
from abaops.schemas.activity import AuditLogRead
from abaops.schemas.dashboard import ActivityFeed, DashboardStats
from abaops.schemas.notification import UnreadCount
from abaops.services import dashboard as dashboard_service

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=DashboardStats)
def stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> DashboardStats:
    return dashboard_service.build_stats(db, current_user)


@router.get("/activity", response_model=ActivityFeed)
def activity_feed(
    limit: int = Query(50, ge=1, le=500),
    entity_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ActivityFeed:
    rbac.require_admin(current_user)
    query = db.query(AuditLog).options(selectinload(AuditLog.user))
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    rows = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
    return ActivityFeed(
        items=[AuditLogRead.model_validate(row) for row in rows],
        unread=dashboard_service.unread_activity_count(db, current_user),
    )


@router.get("/activity/unread-count", response_model=UnreadCount)
def activity_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UnreadCount:
    rbac.require_admin(current_user)
    return UnreadCount(unread=dashboard_service.unread_activity_count(db, current_user))


@router.post("/activity/seen", response_model=UnreadCount)
def mark_activity_seen(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UnreadCount:
    rbac.require_admin(current_user)
    dashboard_service.mark_activity_seen(db, current_user)
    db.commit()
    return UnreadCount(unread=0)
