from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.db.session import get_db
from abaops.models.enums import TimesheetStatus
from abaops.models.user import User
from abaops.schemas.report import DetailedReport, DetailedReportFilters, GroupBy
from abaops.services.reports import build_detailed_report, detailed_report_csv

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.post("/detailed", response_model=DetailedReport)
def detailed_report(
    filters: DetailedReportFilters,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> DetailedReport:
    rbac.require_permission(current_user, "reports.view", "view")
    return build_detailed_report(db, filters)


@router.get("/detailed.csv")
def detailed_report_export(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    provider_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
    bcba_id: Optional[int] = Query(None),
    insurance_id: Optional[int] = Query(None),
    statuses: Optional[List[TimesheetStatus]] = Query(None, alias="status"),
    service_types: Optional[List[Literal["DR", "SV"]]] = Query(None, alias="service_type"),
    include_bcba: bool = Query(False),
    group_by: Optional[GroupBy] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    rbac.require_permission(current_user, "reports.export", "export")
    filters = DetailedReportFilters(
        start_date=start_date,
        end_date=end_date,
        provider_id=provider_id,
        client_id=client_id,
        bcba_id=bcba_id,
        insurance_id=insurance_id,
        statuses=statuses or [],
        service_types=service_types or [],
        include_bcba=include_bcba,
        group_by=group_by,
    )
    report = build_detailed_report(db, filters)
    stamp = date.today().isoformat()
    return Response(
        content=detailed_report_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=detailed-report-{stamp}.csv"},
    )
