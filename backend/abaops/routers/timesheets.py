from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.enums import TimesheetStatus
from abaops.models.master import Client, Provider
from abaops.models.timesheet import Timesheet
from abaops.models.user import User
from abaops.schemas.base import ActionResult, ListResponse
from abaops.schemas.timesheet import (
    BatchArchiveResponse,
    BatchInvoiceResponse,
    OverlapCheckResponse,
    TimesheetActionResponse,
    TimesheetCreate,
    TimesheetIdsPayload,
    TimesheetRead,
    TimesheetReject,
    TimesheetUpdate,
)
from abaops.services.invoices import InvoiceError, generate_invoices_for_timesheets
from abaops.services.pdf import save_pdf, timesheet_pdf
from abaops.services.timesheets import (
    OverlapConflictError,
    TimesheetActionError,
    TimesheetValidationError,
    approve_timesheet,
    archive_timesheets,
    create_timesheet,
    delete_timesheet,
    detect_overlaps,
    reject_timesheet,
    resolve_references,
    submit_timesheet,
    update_timesheet,
)

router = APIRouter(prefix="/api/timesheets", tags=["timesheets"])
logger = logging.getLogger(__name__)


def _approval_key(timesheet: Timesheet) -> str:
    return "bcbaTimesheets.approve" if timesheet.is_bcba else "timesheets.approve"


def _can_approve(user: User, timesheet: Timesheet) -> bool:
    return rbac.is_admin(user) or rbac.has_permission(user, _approval_key(timesheet), "approve")


def _get_timesheet_or_404(db: Session, timesheet_id: int) -> Timesheet:
    timesheet = (
        db.query(Timesheet)
        .options(
            selectinload(Timesheet.entries),
            selectinload(Timesheet.provider),
            selectinload(Timesheet.client),
            selectinload(Timesheet.bcba),
        )
        .filter(Timesheet.id == timesheet_id, Timesheet.not_deleted())
        .first()
    )
    if not timesheet:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Timesheet not found")
    return timesheet


def _require_view(user: User, timesheet: Timesheet) -> None:
    if timesheet.user_id == user.id or _can_approve(user, timesheet):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorised to view this timesheet")


def _require_owner_or_admin(user: User, timesheet: Timesheet) -> None:
    if rbac.is_admin(user) or timesheet.user_id == user.id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorised to modify this timesheet")


def _validation_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, OverlapConflictError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "OVERLAP_CONFLICT", "message": str(exc), "conflicts": exc.conflicts},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _action_error(code: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ActionResult(ok=False, code=code, message=message).model_dump(),
    )


def _read(db: Session, timesheet_id: int) -> TimesheetRead:
    db.expire_all()
    return TimesheetRead.model_validate(_get_timesheet_or_404(db, timesheet_id))


@router.get("", response_model=ListResponse[TimesheetRead])
def list_timesheets(
    status_filter: Optional[TimesheetStatus] = Query(None, alias="status"),
    is_bcba: Optional[bool] = Query(None),
    provider_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    archived: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ListResponse[TimesheetRead]:
    if not rbac.has_any_permission(current_user, [("timesheets.view", "view"), ("bcbaTimesheets.view", "view")]):
        rbac.require_permission(current_user, "timesheets.view", "view")

    query = (
        db.query(Timesheet)
        .options(
            selectinload(Timesheet.entries),
            selectinload(Timesheet.provider),
            selectinload(Timesheet.client),
            selectinload(Timesheet.bcba),
        )
        .filter(Timesheet.not_deleted(), Timesheet.archived.is_(archived))
    )
    if not rbac.is_admin(current_user):
        query = query.filter(Timesheet.user_id == current_user.id)
    if status_filter:
        query = query.filter(Timesheet.status == status_filter)
    if is_bcba is not None:
        query = query.filter(Timesheet.is_bcba.is_(is_bcba))
    if provider_id:
        query = query.filter(Timesheet.provider_id == provider_id)
    if client_id:
        query = query.filter(Timesheet.client_id == client_id)
    if start_date:
        query = query.filter(Timesheet.end_date >= start_date)
    if end_date:
        query = query.filter(Timesheet.start_date <= end_date)
    if search:
        term = f"%{search.strip()}%"
        query = (
            query.join(Client, Timesheet.client_id == Client.id)
            .join(Provider, Timesheet.provider_id == Provider.id)
            .filter(or_(Client.name.ilike(term), Provider.name.ilike(term), Timesheet.timesheet_number.ilike(term)))
        )

    total = query.count()
    rows = (
        query.order_by(Timesheet.created_at.desc(), Timesheet.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return ListResponse[TimesheetRead](
        items=[TimesheetRead.model_validate(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
        has_more=page * page_size < total,
    )


@router.post("", response_model=TimesheetRead, status_code=status.HTTP_201_CREATED)
def create(
    payload: TimesheetCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TimesheetRead:
    rbac.require_permission(current_user, "timesheets.create", "create")
    try:
        timesheet = create_timesheet(db, payload=payload, user=current_user)
    except (TimesheetValidationError, OverlapConflictError) as exc:
        db.rollback()
        raise _validation_error(exc)
    db.commit()
    return _read(db, timesheet.id)


@router.post("/check-overlaps", response_model=OverlapCheckResponse)
def check_overlaps(
    payload: TimesheetCreate,
    exclude_timesheet_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> OverlapCheckResponse:
    rbac.require_permission(current_user, "timesheets.create", "create")
    if payload.is_bcba:
        return OverlapCheckResponse(has_conflicts=False, conflicts=[])
    try:
        resolved = resolve_references(db, payload)
    except TimesheetValidationError as exc:
        raise _validation_error(exc)
    conflicts = detect_overlaps(
        db,
        provider=resolved.provider,
        client=resolved.client,
        entries=payload.entries,
        exclude_timesheet_id=exclude_timesheet_id,
    )
    return OverlapCheckResponse(has_conflicts=bool(conflicts), conflicts=conflicts)


@router.post("/batch/archive", response_model=BatchArchiveResponse)
def batch_archive(
    payload: TimesheetIdsPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BatchArchiveResponse:
    rbac.require_admin(current_user)
    archived = archive_timesheets(db, timesheet_ids=payload.ids, user=current_user)
    db.commit()
    return BatchArchiveResponse(archived=archived)


@router.post("/batch/generate-invoice", response_model=BatchInvoiceResponse)
def batch_generate_invoice(
    payload: TimesheetIdsPayload,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BatchInvoiceResponse:
    rbac.require_permission(current_user, "invoices.create", "create")
    try:
        result = generate_invoices_for_timesheets(db, timesheet_ids=payload.ids, user=current_user)
    except InvoiceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    if not result.invoice_ids and result.errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="; ".join(result.errors))
    return BatchInvoiceResponse(
        invoices_created=len(result.invoice_ids),
        invoice_ids=result.invoice_ids,
        errors=result.errors,
    )


@router.get("/{timesheet_id}", response_model=TimesheetRead)
def get_timesheet(
    timesheet_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TimesheetRead:
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    _require_view(current_user, timesheet)
    return TimesheetRead.model_validate(timesheet)


@router.put("/{timesheet_id}", response_model=TimesheetRead)
def update(
    timesheet_id: int,
    payload: TimesheetUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TimesheetRead:
    rbac.require_permission(current_user, "timesheets.update", "update")
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    _require_owner_or_admin(current_user, timesheet)
    try:
        update_timesheet(db, timesheet=timesheet, payload=payload, user=current_user)
    except (TimesheetValidationError, OverlapConflictError) as exc:
        db.rollback()
        raise _validation_error(exc)
    db.commit()
    return _read(db, timesheet_id)


@router.delete("/{timesheet_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete(
    timesheet_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    if timesheet.user_id != current_user.id:
        rbac.require_permission(current_user, "timesheets.delete", "delete")
    require_destructive_allowed("delete_timesheet")
    try:
        delete_timesheet(db, timesheet=timesheet, user=current_user)
    except TimesheetValidationError as exc:
        raise _validation_error(exc)
    db.commit()


@router.post("/{timesheet_id}/submit", response_model=TimesheetRead)
def submit(
    timesheet_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TimesheetRead:
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    _require_owner_or_admin(current_user, timesheet)
    try:
        submit_timesheet(db, timesheet=timesheet, user=current_user)
    except TimesheetActionError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    db.commit()
    return _read(db, timesheet_id)


@router.post("/{timesheet_id}/approve", response_model=TimesheetActionResponse)
def approve(
    timesheet_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    timesheet = (
        db.query(Timesheet)
        .options(selectinload(Timesheet.provider), selectinload(Timesheet.client), selectinload(Timesheet.bcba))
        .filter(Timesheet.id == timesheet_id, Timesheet.not_deleted())
        .first()
    )
    if timesheet is None:
        return _action_error("NOT_FOUND", "Timesheet not found", status.HTTP_404_NOT_FOUND)
    if not _can_approve(current_user, timesheet):
        return _action_error(
            "FORBIDDEN",
            f"Missing permission: {_approval_key(timesheet)} (approve)",
            status.HTTP_403_FORBIDDEN,
        )
    try:
        approve_timesheet(db, timesheet=timesheet, user=current_user)
    except TimesheetActionError as exc:
        db.rollback()
        logger.info("Approve rejected for timesheet %s: %s", timesheet_id, exc.code)
        return _action_error(exc.code, exc.message, exc.status_code)
    db.commit()
    return TimesheetActionResponse(ok=True, data=_read(db, timesheet_id))


@router.post("/{timesheet_id}/reject", response_model=TimesheetRead)
def reject(
    timesheet_id: int,
    payload: TimesheetReject,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TimesheetRead:
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    if not _can_approve(current_user, timesheet):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorised to reject this timesheet")
    try:
        reject_timesheet(db, timesheet=timesheet, user=current_user, reason=payload.reason)
    except TimesheetActionError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    db.commit()
    return _read(db, timesheet_id)


@router.get("/{timesheet_id}/pdf")
def download_pdf(
    timesheet_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    _require_view(current_user, timesheet)
    filename = f"timesheet-{timesheet.timesheet_number or timesheet.id}.pdf"
    path = save_pdf(timesheet_pdf(timesheet), filename, subdir="timesheets")
    return FileResponse(path=str(path), filename=filename, media_type="application/pdf")
