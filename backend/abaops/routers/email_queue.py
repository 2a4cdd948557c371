from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.email_queue import EmailQueueItem
from abaops.models.enums import EmailQueueContext, EmailQueueStatus
from abaops.models.user import User
from abaops.schemas.email_queue import BatchSendResult, BulkDeleteResult, EmailQueueIds, EmailQueueItemRead, EmailQueueRow
from abaops.schemas.timesheet import TimesheetSummary
from abaops.services import email_queue as queue_service

router = APIRouter(prefix="/api/email-queue", tags=["email-queue"])


def _get_item_or_404(db: Session, item_id: int) -> EmailQueueItem:
    item = queue_service.get_item(db, item_id, context=EmailQueueContext.MAIN)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Queue item not found")
    return item


def _result(outcome: queue_service.BatchOutcome) -> BatchSendResult:
    return BatchSendResult(
        success=outcome.success,
        sent=outcome.sent,
        failed=outcome.failed,
        batch_id=outcome.batch_id,
        message=outcome.message,
        errors=outcome.errors,
    )


@router.get("", response_model=List[EmailQueueRow])
def list_queue(
    status_filter: Optional[EmailQueueStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[EmailQueueRow]:
    rbac.require_permission(current_user, "emailQueue.view", "view")
    items = queue_service.list_items(db, context=EmailQueueContext.MAIN, status=status_filter)
    timesheets = queue_service.timesheets_for_items(db, items)
    rows: List[EmailQueueRow] = []
    for item in items:
        row = EmailQueueRow.model_validate(item)
        timesheet = timesheets.get(item.entity_id)
        if timesheet is not None:
            row.timesheet = TimesheetSummary.model_validate(timesheet)
        rows.append(row)
    return rows


@router.post("/send-batch", response_model=BatchSendResult)
def send_batch(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BatchSendResult:
    rbac.require_permission(current_user, "emailQueue.sendBatch", "update")
    outcome = queue_service.send_batch(db, user=current_user)
    db.commit()
    return _result(outcome)


@router.post("/send-selected", response_model=BatchSendResult)
def send_selected(
    payload: EmailQueueIds,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BatchSendResult:
    rbac.require_permission(current_user, "emailQueue.sendBatch", "update")
    try:
        outcome = queue_service.send_selected(db, item_ids=payload.ids, user=current_user)
    except queue_service.EmailQueueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return _result(outcome)


@router.post("/bulk-delete", response_model=BulkDeleteResult)
def bulk_delete(
    payload: EmailQueueIds,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BulkDeleteResult:
    rbac.require_permission(current_user, "emailQueue.delete", "delete")
    require_destructive_allowed("bulk_delete_email_queue")
    try:
        deleted = queue_service.bulk_delete(
            db,
            item_ids=payload.ids,
            context=EmailQueueContext.MAIN,
            user=current_user,
        )
    except queue_service.EmailQueueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return BulkDeleteResult(deleted=deleted)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "emailQueue.delete", "delete")
    require_destructive_allowed("delete_email_queue_item")
    item = _get_item_or_404(db, item_id)
    try:
        queue_service.delete_item(db, item=item, user=current_user)
    except queue_service.EmailQueueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()


@router.post("/{item_id}/resend", response_model=EmailQueueItemRead)
def resend_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EmailQueueItemRead:
    rbac.require_permission(current_user, "emailQueue.sendBatch", "update")
    item = _get_item_or_404(db, item_id)
    try:
        queue_service.resend_item(db, item=item, user=current_user)
    except queue_service.EmailQueueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    db.refresh(item)
    return EmailQueueItemRead.model_validate(item)
