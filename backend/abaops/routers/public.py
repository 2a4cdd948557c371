from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from abaops.db.session import get_db
from abaops.models.community import CommunityInvoice
from abaops.models.invoice import Invoice
from abaops.schemas.community import PublicCommunityInvoiceRead
from abaops.schemas.invoice import PublicInvoiceRead
from abaops.services import community as community_service
from abaops.services import invoices as invoice_service
from abaops.services.pdf import community_invoice_pdf, invoice_pdf, save_pdf

router = APIRouter(prefix="/api/public", tags=["public"])


def _invoice_by_token_or_error(db: Session, token: str) -> Invoice:
    try:
        invoice = invoice_service.get_invoice_by_token(db, token)
    except invoice_service.InvoiceTokenExpired as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(exc))
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


def _community_invoice_by_token_or_error(db: Session, token: str) -> CommunityInvoice:
    try:
        invoice = community_service.get_invoice_by_token(db, token)
    except community_service.CommunityTokenExpired as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


@router.get("/invoices/{token}", response_model=PublicInvoiceRead)
def view_invoice(token: str, db: Session = Depends(get_db)) -> PublicInvoiceRead:
    return PublicInvoiceRead.model_validate(_invoice_by_token_or_error(db, token))


@router.get("/invoices/{token}/pdf")
def view_invoice_pdf(token: str, db: Session = Depends(get_db)):
    invoice = _invoice_by_token_or_error(db, token)
    filename = f"{invoice.invoice_number}.pdf"
    path = save_pdf(invoice_pdf(invoice), filename, subdir="invoices")
    return FileResponse(path=str(path), filename=filename, media_type="application/pdf")


@router.get("/community-invoices/{token}", response_model=PublicCommunityInvoiceRead)
def view_community_invoice(token: str, db: Session = Depends(get_db)) -> PublicCommunityInvoiceRead:
    return PublicCommunityInvoiceRead.model_validate(_community_invoice_by_token_or_error(db, token))


@router.get("/community-invoices/{token}/pdf")
def view_community_invoice_pdf(token: str, db: Session = Depends(get_db)):
    invoice = _community_invoice_by_token_or_error(db, token)
    filename = f"community-invoice-{invoice.id}.pdf"
    path = save_pdf(community_invoice_pdf(invoice), filename, subdir="community")
    return FileResponse(path=str(path), filename=filename, media_type="application/pdf")
