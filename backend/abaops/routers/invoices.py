from __future__ import annotations

import csv
import io
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy.orm import Session, selectinload

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.core.settings import settings
from abaops.db.session import get_db
from abaops.models.enums import InvoiceStatus, ScheduledJobType
from abaops.models.invoice import Invoice, InvoiceEntry
from abaops.models.master import Client
from abaops.models.user import User
from abaops.schemas.base import ListResponse
from abaops.schemas.invoice import (
    GenerationResult,
    GenerationStatus,
    InvoiceAdjustmentCreate,
    InvoiceAdjustmentRead,
    InvoiceCreate,
    InvoiceListRow,
    InvoicePaymentCreate,
    InvoicePaymentRead,
    InvoiceRead,
    InvoiceUpdate,
)
from abaops.services.billing_period import WEEKLY_INVOICE_SCHEDULE, get_next_run_time
from abaops.services.invoice_generation import run_invoice_generation_job
from abaops.services.invoices import (
    InvoiceError,
    add_adjustment,
    approve_invoice,
    create_manual_invoice,
    delete_invoice,
    record_payment,
    update_invoice,
    void_invoice,
)
from abaops.services.pdf import invoice_pdf, save_pdf
from abaops.services.scheduled_jobs import get_job

router = APIRouter(prefix="/api/invoices", tags=["invoices"])

CSV_HEADERS = [
    "Invoice",
    "Client",
    "Start",
    "End",
    "Status",
    "Total",
    "Paid",
    "Adjustments",
    "Outstanding",
    "Sent",
]


def _require_invoice_view(user: User) -> None:
    rbac.require_permission(user, "invoices.view", "view")


def _get_invoice_or_404(db: Session, invoice_id: int) -> Invoice:
    invoice = (
        db.query(Invoice)
        .options(
            selectinload(Invoice.client),
            selectinload(Invoice.entries).selectinload(InvoiceEntry.provider),
            selectinload(Invoice.payments),
            selectinload(Invoice.adjustment_rows),
        )
        .filter(Invoice.id == invoice_id, Invoice.not_deleted())
        .first()
    )
    if not invoice:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


def _read(db: Session, invoice_id: int) -> InvoiceRead:
    db.expire_all()
    return InvoiceRead.model_validate(_get_invoice_or_404(db, invoice_id))


def _filtered_query(
    db: Session,
    *,
    status_filter: Optional[InvoiceStatus],
    client_id: Optional[int],
    search: Optional[str],
    start_date: Optional[date],
    end_date: Optional[date],
):
    query = db.query(Invoice).options(selectinload(Invoice.client)).filter(Invoice.not_deleted())
    if status_filter:
        query = query.filter(Invoice.status == status_filter)
    if client_id:
        query = query.filter(Invoice.client_id == client_id)
    if start_date:
        query = query.filter(Invoice.end_date >= start_date)
    if end_date:
        query = query.filter(Invoice.start_date <= end_date)
    if search:
        term = f"%{search.strip()}%"
        query = query.join(Client, Invoice.client_id == Client.id).filter(
            (Invoice.invoice_number.ilike(term)) | (Client.name.ilike(term))
        )
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc())


@router.get("", response_model=ListResponse[InvoiceListRow])
def list_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ListResponse[InvoiceListRow]:
    _require_invoice_view(current_user)
    query = _filtered_query(
        db,
        status_filter=status_filter,
        client_id=client_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
    )
    total = query.count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    return ListResponse[InvoiceListRow](
        items=[InvoiceListRow.model_validate(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
        has_more=page * page_size < total,
    )


@router.get("/export.csv")
def export_invoices_csv(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rbac.require_permission(current_user, "invoices.export", "export")
    invoices = _filtered_query(
        db,
        status_filter=status_filter,
        client_id=client_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
    ).all()

    def iter_rows():
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADERS)
        yield buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
        for invoice in invoices:
            writer.writerow([
                invoice.invoice_number,
                invoice.client_name or "",
                invoice.start_date.isoformat(),
                invoice.end_date.isoformat(),
                invoice.status.value,
                invoice.total_amount,
                invoice.paid_amount,
                invoice.adjustments,
                invoice.outstanding,
                invoice.sent_at.isoformat() if invoice.sent_at else "",
            ])
            yield buffer.getvalue()
            buffer.seek(0)
            buffer.truncate(0)

    filename = f"invoices_export_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M')}.csv"
    return StreamingResponse(
        iter_rows(),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/generation-status", response_model=GenerationStatus)
def generation_status(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GenerationStatus:
    rbac.require_admin(current_user)
    job = get_job(db, ScheduledJobType.INVOICE_GENERATION)
    if job is None:
        return GenerationStatus(
            active=False,
            schedule=WEEKLY_INVOICE_SCHEDULE,
            timezone=settings.billing_timezone,
            next_run=get_next_run_time(tz_name=settings.billing_timezone),
        )
    return GenerationStatus(
        active=job.active,
        schedule=job.schedule,
        timezone=job.timezone,
        last_run=job.last_run,
        next_run=job.next_run,
        last_result=job.metadata_json,
    )


@router.post("/generate-now", response_model=GenerationResult)
def generate_now(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GenerationResult:
    rbac.require_admin(current_user)
    summary = run_invoice_generation_job(db)
    db.commit()
    return GenerationResult(
        success=summary.success,
        invoices_created=summary.invoices_created,
        clients_processed=summary.clients_processed,
        skipped=summary.skipped,
        errors=summary.errors,
        period_label=summary.period.label,
    )


@router.post("", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    rbac.require_permission(current_user, "invoices.create", "create")
    try:
        invoice = create_manual_invoice(db, payload=payload, user=current_user)
    except InvoiceError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return _read(db, invoice.id)


@router.get("/{invoice_id}", response_model=InvoiceRead)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    _require_invoice_view(current_user)
    return InvoiceRead.model_validate(_get_invoice_or_404(db, invoice_id))


@router.patch("/{invoice_id}", response_model=InvoiceRead)
def patch_invoice(
    invoice_id: int,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    rbac.require_permission(current_user, "invoices.update", "update")
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        update_invoice(db, invoice=invoice, payload=payload, user=current_user)
    except InvoiceError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return _read(db, invoice_id)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "invoices.delete", "delete")
    require_destructive_allowed("delete_invoice")
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        delete_invoice(db, invoice=invoice, user=current_user)
    except InvoiceError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()


@router.post("/{invoice_id}/approve", response_model=InvoiceRead)
def approve(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    rbac.require_permission(current_user, "invoices.update", "approve")
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        approve_invoice(db, invoice=invoice, user=current_user)
    except InvoiceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return _read(db, invoice_id)


@router.post("/{invoice_id}/payments", response_model=InvoicePaymentRead, status_code=status.HTTP_201_CREATED)
def add_payment(
    invoice_id: int,
    payload: InvoicePaymentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoicePaymentRead:
    rbac.require_permission(current_user, "invoices.payments", "create")
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        payment = record_payment(db, invoice=invoice, payload=payload, user=current_user)
    except InvoiceError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    db.refresh(payment)
    return InvoicePaymentRead.model_validate(payment)


@router.post("/{invoice_id}/adjustments", response_model=InvoiceAdjustmentRead, status_code=status.HTTP_201_CREATED)
def create_adjustment(
    invoice_id: int,
    payload: InvoiceAdjustmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceAdjustmentRead:
    rbac.require_admin(current_user)
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        adjustment = add_adjustment(db, invoice=invoice, payload=payload, user=current_user)
    except InvoiceError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    db.refresh(adjustment)
    return InvoiceAdjustmentRead.model_validate(adjustment)


@router.post("/{invoice_id}/void", response_model=InvoiceRead)
def void(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    rbac.require_permission(current_user, "invoices.update", "update")
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        void_invoice(db, invoice=invoice, user=current_user)
    except InvoiceError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return _read(db, invoice_id)


@router.get("/{invoice_id}/pdf")
def download_pdf(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _require_invoice_view(current_user)
    invoice = _get_invoice_or_404(db, invoice_id)
    filename = f"{invoice.invoice_number}.pdf"
    path = save_pdf(invoice_pdf(invoice), filename, subdir="invoices")
    return FileResponse(path=str(path), filename=filename, media_type="application/pdf")
