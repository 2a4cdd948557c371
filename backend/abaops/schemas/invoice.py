from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from abaops.models.enums import InvoiceStatus, PaymentMethod
from abaops.schemas.base import ORMModel


class InvoiceCreate(ORMModel):
    client_id: int
    start_date: date
    end_date: date
    timesheet_ids: Optional[List[int]] = None
    notes: Optional[str] = None


class InvoiceUpdate(ORMModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceEntryRead(ORMModel):
    id: int
    timesheet_id: int
    timesheet_entry_id: Optional[int] = None
    provider_id: int
    provider_name: Optional[str] = None
    insurance_id: int
    service_date: Optional[date] = None
    entry_type: Optional[str] = None
    units: Decimal
    billable_units: Decimal
    rate: Decimal
    amount: Decimal


class InvoicePaymentCreate(ORMModel):
    amount: Decimal = Field(..., gt=Decimal("0.00"))
    payment_date: date
    method: PaymentMethod = PaymentMethod.CHECK
    reference: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None


class InvoicePaymentRead(ORMModel):
    id: int
    invoice_id: int
    amount: Decimal
    payment_date: date
    method: PaymentMethod
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_by_user_id: int
    created_at: datetime


class InvoiceAdjustmentCreate(ORMModel):
    amount: Decimal
    reason: str

    @field_validator("amount")
    @classmethod
    def non_zero(cls, value: Decimal) -> Decimal:
        if value == 0:
            raise ValueError("Adjustment amount must be non-zero")
        return value

    @field_validator("reason")
    @classmethod
    def non_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Adjustment reason is required")
        return value.strip()


class InvoiceAdjustmentRead(ORMModel):
    id: int
    invoice_id: int
    amount: Decimal
    reason: str
    created_by_user_id: int
    created_at: datetime


class InvoiceListRow(ORMModel):
    id: int
    invoice_number: str
    client_id: int
    client_name: Optional[str] = None
    start_date: date
    end_date: date
    status: InvoiceStatus
    total_amount: Decimal
    paid_amount: Decimal
    adjustments: Decimal
    outstanding: Decimal
    sent_at: Optional[datetime] = None
    created_at: datetime


class InvoiceRead(InvoiceListRow):
    notes: Optional[str] = None
    created_by_user_id: int
    view_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    total_units: Decimal = Decimal("0.00")
    billable_units: Decimal = Decimal("0.00")
    entries: List[InvoiceEntryRead] = Field(default_factory=list)
    payments: List[InvoicePaymentRead] = Field(default_factory=list)
    adjustment_rows: List[InvoiceAdjustmentRead] = Field(default_factory=list)
    updated_at: datetime


class PublicInvoiceRead(ORMModel):
    invoice_number: str
    client_name: Optional[str] = None
    start_date: date
    end_date: date
    status: InvoiceStatus
    total_amount: Decimal
    paid_amount: Decimal
    adjustments: Decimal
    outstanding: Decimal
    entries: List[InvoiceEntryRead] = Field(default_factory=list)


class GenerationResult(ORMModel):
    success: bool
    invoices_created: int
    clients_processed: int
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    period_label: Optional[str] = None


class GenerationStatus(ORMModel):
    active: bool
    schedule: str
    timezone: str
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    last_result: Optional[dict] = None
