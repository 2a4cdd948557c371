from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.db.session import get_db
from abaops.models.user import User
from abaops.schemas.analytics import AnalyticsReport
from abaops.services import analytics as analytics_service

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("", response_model=AnalyticsReport)
def analytics(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    provider_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
    bcba_id: Optional[int] = Query(None),
    insurance_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AnalyticsReport:
    rbac.require_permission(current_user, "dashboard.analytics", "view")
    try:
        filters = analytics_service.build_filters(
            start_date=start_date,
            end_date=end_date,
            provider_id=provider_id,
            client_id=client_id,
            bcba_id=bcba_id,
            insurance_id=insurance_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return analytics_service.build_report(db, current_user, filters)
