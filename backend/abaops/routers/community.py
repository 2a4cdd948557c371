from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.community import CommunityClass, CommunityClient, CommunityInvoice
from abaops.models.email_queue import EmailQueueItem
from abaops.models.enums import AuditAction, CommunityClientStatus, CommunityInvoiceStatus, EmailQueueContext, EmailQueueStatus
from abaops.models.user import User
from abaops.schemas.community import (
    CommunityClassCreate,
    CommunityClassRead,
    CommunityClassUpdate,
    CommunityClientCreate,
    CommunityClientRead,
    CommunityClientUpdate,
    CommunityInvoiceApprove,
    CommunityInvoiceCreate,
    CommunityInvoiceRead,
    CommunityInvoiceReject,
    CommunityInvoiceUpdate,
    CommunityQueueRow,
    CommunitySendBatch,
)
from abaops.schemas.email_queue import BatchSendResult, BulkDeleteResult, EmailQueueIds, EmailQueueItemRead
from abaops.services import community as community_service
from abaops.services import email_queue as queue_service
from abaops.services.activity import log_audit, snapshot
from abaops.services.pdf import community_invoice_pdf, save_pdf

router = APIRouter(prefix="/api/community", tags=["community"])

CLIENT_AUDIT_FIELDS = ("first_name", "last_name", "email", "status")
CLASS_AUDIT_FIELDS = ("name", "rate_per_unit", "is_active")


def _service_error(exc: community_service.CommunityInvoiceError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail={"code": exc.code, "message": exc.message})


def _get_client_or_404(db: Session, client_id: int) -> CommunityClient:
    client = db.get(CommunityClient, client_id)
    if not client or client.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Community client not found")
    return client


def _get_class_or_404(db: Session, class_id: int) -> CommunityClass:
    community_class = db.get(CommunityClass, class_id)
    if not community_class or community_class.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Community class not found")
    return community_class


def _get_invoice_or_404(db: Session, invoice_id: int) -> CommunityInvoice:
    invoice = (
        db.query(CommunityInvoice)
        .options(selectinload(CommunityInvoice.client), selectinload(CommunityInvoice.community_class))
        .filter(CommunityInvoice.id == invoice_id, CommunityInvoice.not_deleted())
        .first()
    )
    if not invoice:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Community invoice not found")
    return invoice


def _get_queue_item_or_404(db: Session, item_id: int) -> EmailQueueItem:
    item = queue_service.get_item(db, item_id, context=EmailQueueContext.COMMUNITY)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Queue item not found")
    return item


def _read_invoice(db: Session, invoice_id: int) -> CommunityInvoiceRead:
    db.expire_all()
    return CommunityInvoiceRead.model_validate(_get_invoice_or_404(db, invoice_id))


def _batch_result(outcome: queue_service.BatchOutcome) -> BatchSendResult:
    return BatchSendResult(
        success=outcome.success,
        sent=outcome.sent,
        failed=outcome.failed,
        batch_id=outcome.batch_id,
        message=outcome.message,
        errors=outcome.errors,
        scheduled=outcome.scheduled,
        scheduled_send_at=outcome.scheduled_send_at,
    )


# Clients


@router.get("/clients", response_model=List[CommunityClientRead])
def list_clients(
    search: Optional[str] = Query(None),
    status_filter: Optional[CommunityClientStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[CommunityClientRead]:
    rbac.require_permission(current_user, "community.view", "view")
    query = db.query(CommunityClient).filter(CommunityClient.not_deleted())
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(CommunityClient.first_name.ilike(term), CommunityClient.last_name.ilike(term)))
    if status_filter:
        query = query.filter(CommunityClient.status == status_filter)
    clients = query.order_by(CommunityClient.last_name.asc(), CommunityClient.first_name.asc()).all()
    return [CommunityClientRead.model_validate(client) for client in clients]


@router.post("/clients", response_model=CommunityClientRead, status_code=status.HTTP_201_CREATED)
def create_client(
    payload: CommunityClientCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityClientRead:
    rbac.require_permission(current_user, "community.manage", "create")
    client = CommunityClient(**payload.model_dump())
    db.add(client)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="CommunityClient",
        entity_id=client.id,
        user_id=current_user.id,
        new_values=snapshot(client, CLIENT_AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(client)
    return CommunityClientRead.model_validate(client)


@router.get("/clients/{client_id}", response_model=CommunityClientRead)
def get_client(
    client_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityClientRead:
    rbac.require_permission(current_user, "community.view", "view")
    return CommunityClientRead.model_validate(_get_client_or_404(db, client_id))


@router.patch("/clients/{client_id}", response_model=CommunityClientRead)
def update_client(
    client_id: int,
    payload: CommunityClientUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityClientRead:
    rbac.require_permission(current_user, "community.manage", "update")
    client = _get_client_or_404(db, client_id)
    before = snapshot(client, CLIENT_AUDIT_FIELDS)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(client, field, value)
    db.add(client)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="CommunityClient",
        entity_id=client.id,
        user_id=current_user.id,
        old_values=before,
        new_values=snapshot(client, CLIENT_AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(client)
    return CommunityClientRead.model_validate(client)


@router.delete("/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(
    client_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "community.manage", "delete")
    require_destructive_allowed("delete_community_client")
    client = _get_client_or_404(db, client_id)
    client.soft_delete()
    db.add(client)
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="CommunityClient",
        entity_id=client.id,
        user_id=current_user.id,
        old_values=snapshot(client, CLIENT_AUDIT_FIELDS),
    )
    db.commit()


# Classes


@router.get("/classes", response_model=List[CommunityClassRead])
def list_classes(
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[CommunityClassRead]:
    rbac.require_permission(current_user, "community.view", "view")
    query = db.query(CommunityClass).filter(CommunityClass.not_deleted())
    if active is not None:
        query = query.filter(CommunityClass.is_active.is_(active))
    return [CommunityClassRead.model_validate(row) for row in query.order_by(CommunityClass.name.asc()).all()]


@router.post("/classes", response_model=CommunityClassRead, status_code=status.HTTP_201_CREATED)
def create_class(
    payload: CommunityClassCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityClassRead:
    rbac.require_permission(current_user, "community.manage", "create")
    community_class = CommunityClass(**payload.model_dump())
    community_class.name = community_class.name.strip()
    db.add(community_class)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="CommunityClass",
        entity_id=community_class.id,
        user_id=current_user.id,
        new_values=snapshot(community_class, CLASS_AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(community_class)
    return CommunityClassRead.model_validate(community_class)


@router.patch("/classes/{class_id}", response_model=CommunityClassRead)
def update_class(
    class_id: int,
    payload: CommunityClassUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityClassRead:
    rbac.require_permission(current_user, "community.manage", "update")
    community_class = _get_class_or_404(db, class_id)
    before = snapshot(community_class, CLASS_AUDIT_FIELDS)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(community_class, field, value)
    db.add(community_class)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="CommunityClass",
        entity_id=community_class.id,
        user_id=current_user.id,
        old_values=before,
        new_values=snapshot(community_class, CLASS_AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(community_class)
    return CommunityClassRead.model_validate(community_class)


@router.delete("/classes/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_class(
    class_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "community.manage", "delete")
    require_destructive_allowed("delete_community_class")
    community_class = _get_class_or_404(db, class_id)
    community_class.soft_delete()
    community_class.is_active = False
    db.add(community_class)
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="CommunityClass",
        entity_id=community_class.id,
        user_id=current_user.id,
        old_values=snapshot(community_class, CLASS_AUDIT_FIELDS),
    )
    db.commit()


# Invoices


@router.get("/invoices", response_model=List[CommunityInvoiceRead])
def list_invoices(
    status_filter: Optional[CommunityInvoiceStatus] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[CommunityInvoiceRead]:
    rbac.require_permission(current_user, "community.view", "view")
    query = (
        db.query(CommunityInvoice)
        .options(selectinload(CommunityInvoice.client), selectinload(CommunityInvoice.community_class))
        .filter(CommunityInvoice.not_deleted())
    )
    if status_filter:
        query = query.filter(CommunityInvoice.status == status_filter)
    if client_id:
        query = query.filter(CommunityInvoice.client_id == client_id)
    invoices = query.order_by(CommunityInvoice.created_at.desc(), CommunityInvoice.id.desc()).all()
    return [CommunityInvoiceRead.model_validate(invoice) for invoice in invoices]


@router.post("/invoices", response_model=CommunityInvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: CommunityInvoiceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityInvoiceRead:
    rbac.require_permission(current_user, "community.manage", "create")
    try:
        invoice = community_service.create_invoice(db, payload=payload, user=current_user)
    except community_service.CommunityInvoiceError as exc:
        db.rollback()
        raise _service_error(exc)
    db.commit()
    return _read_invoice(db, invoice.id)


@router.get("/invoices/{invoice_id}", response_model=CommunityInvoiceRead)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityInvoiceRead:
    rbac.require_permission(current_user, "community.view", "view")
    return CommunityInvoiceRead.model_validate(_get_invoice_or_404(db, invoice_id))


@router.patch("/invoices/{invoice_id}", response_model=CommunityInvoiceRead)
def update_invoice(
    invoice_id: int,
    payload: CommunityInvoiceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityInvoiceRead:
    rbac.require_permission(current_user, "community.manage", "update")
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        community_service.update_invoice(db, invoice=invoice, payload=payload, user=current_user)
    except community_service.CommunityInvoiceError as exc:
        db.rollback()
        raise _service_error(exc)
    db.commit()
    return _read_invoice(db, invoice_id)


@router.delete("/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "community.manage", "delete")
    require_destructive_allowed("delete_community_invoice")
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        community_service.delete_invoice(db, invoice=invoice, user=current_user)
    except community_service.CommunityInvoiceError as exc:
        raise _service_error(exc)
    db.commit()


@router.post("/invoices/{invoice_id}/approve", response_model=CommunityInvoiceRead)
def approve_invoice(
    invoice_id: int,
    payload: Optional[CommunityInvoiceApprove] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityInvoiceRead:
    rbac.require_permission(current_user, "community.invoices.approve", "approve")
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        community_service.approve_invoice(
            db,
            invoice=invoice,
            user=current_user,
            scheduled_send_at=payload.scheduled_send_at if payload else None,
        )
    except community_service.CommunityInvoiceError as exc:
        db.rollback()
        raise _service_error(exc)
    db.commit()
    return _read_invoice(db, invoice_id)


@router.post("/invoices/{invoice_id}/reject", response_model=CommunityInvoiceRead)
def reject_invoice(
    invoice_id: int,
    payload: CommunityInvoiceReject,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CommunityInvoiceRead:
    rbac.require_permission(current_user, "community.invoices.approve", "approve")
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        community_service.reject_invoice(db, invoice=invoice, user=current_user, reason=payload.reason)
    except community_service.CommunityInvoiceError as exc:
        raise _service_error(exc)
    db.commit()
    return _read_invoice(db, invoice_id)


@router.get("/invoices/{invoice_id}/pdf")
def download_invoice_pdf(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rbac.require_permission(current_user, "community.view", "view")
    invoice = _get_invoice_or_404(db, invoice_id)
    filename = f"community-invoice-{invoice.id}.pdf"
    path = save_pdf(community_invoice_pdf(invoice), filename, subdir="community")
    return FileResponse(path=str(path), filename=filename, media_type="application/pdf")


# Email queue


@router.get("/email-queue", response_model=List[CommunityQueueRow])
def list_queue(
    status_filter: Optional[EmailQueueStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[CommunityQueueRow]:
    rbac.require_permission(current_user, "community.invoices.emailqueue.view", "view")
    items = queue_service.list_items(db, context=EmailQueueContext.COMMUNITY, status=status_filter)
    invoice_ids = [item.entity_id for item in items]
    invoices = {}
    if invoice_ids:
        invoices = {
            invoice.id: invoice
            for invoice in db.query(CommunityInvoice)
            .options(selectinload(CommunityInvoice.client), selectinload(CommunityInvoice.community_class))
            .filter(CommunityInvoice.id.in_(invoice_ids))
            .all()
        }
    rows: List[CommunityQueueRow] = []
    for item in items:
        row = CommunityQueueRow.model_validate(item)
        invoice = invoices.get(item.entity_id)
        if invoice is not None:
            row.invoice = CommunityInvoiceRead.model_validate(invoice)
        rows.append(row)
    return rows


@router.post("/email-queue/send-batch", response_model=BatchSendResult)
def send_batch(
    payload: CommunitySendBatch,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BatchSendResult:
    rbac.require_permission(current_user, "community.invoices.emailqueue.send", "update")
    try:
        outcome = community_service.send_batch(
            db,
            user=current_user,
            recipients=payload.recipients,
            item_ids=payload.ids,
            scheduled_send_at=payload.scheduled_send_at,
        )
    except community_service.CommunityInvoiceError as exc:
        db.rollback()
        raise _service_error(exc)
    db.commit()
    return _batch_result(outcome)


@router.post("/email-queue/bulk-delete", response_model=BulkDeleteResult)
def bulk_delete(
    payload: EmailQueueIds,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BulkDeleteResult:
    rbac.require_permission(current_user, "community.invoices.emailqueue.delete", "delete")
    require_destructive_allowed("bulk_delete_community_queue")
    try:
        deleted = queue_service.bulk_delete(
            db,
            item_ids=payload.ids,
            context=EmailQueueContext.COMMUNITY,
            user=current_user,
        )
    except queue_service.EmailQueueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return BulkDeleteResult(deleted=deleted)


@router.post("/email-queue/{item_id}/resend", response_model=EmailQueueItemRead)
def resend(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EmailQueueItemRead:
    rbac.require_permission(current_user, "community.invoices.emailqueue.send", "update")
    item = _get_queue_item_or_404(db, item_id)
    try:
        community_service.resend_item(db, item=item, user=current_user)
    except community_service.CommunityInvoiceError as exc:
        raise _service_error(exc)
    db.commit()
    db.refresh(item)
    return EmailQueueItemRead.model_validate(item)


@router.delete("/email-queue/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_from_queue(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "community.invoices.emailqueue.delete", "delete")
    require_destructive_allowed("delete_community_queue_item")
    item = _get_queue_item_or_404(db, item_id)
    try:
        queue_service.delete_item(db, item=item, user=current_user)
    except queue_service.EmailQueueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
