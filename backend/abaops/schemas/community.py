from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from abaops.models.enums import CommunityClientStatus, CommunityInvoiceStatus
from abaops.schemas.base import ORMModel, validate_email_value
from abaops.schemas.email_queue import EmailQueueItemRead


class CommunityClientBase(ORMModel):
    first_name: str = Field(..., min_length=1, max_length=120)
    last_name: str = Field(..., min_length=1, max_length=120)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    status: CommunityClientStatus = CommunityClientStatus.ACTIVE

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return validate_email_value(value)


class CommunityClientCreate(CommunityClientBase):
    pass


class CommunityClientUpdate(ORMModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[CommunityClientStatus] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return validate_email_value(value)


class CommunityClientRead(CommunityClientBase):
    id: int
    full_name: str
    created_at: datetime
    updated_at: datetime


class CommunityClassBase(ORMModel):
    name: str = Field(..., min_length=1, max_length=255)
    rate_per_unit: Decimal = Field(..., ge=Decimal("0.00"))
    is_active: bool = True


class CommunityClassCreate(CommunityClassBase):
    pass


class CommunityClassUpdate(ORMModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    rate_per_unit: Optional[Decimal] = Field(default=None, ge=Decimal("0.00"))
    is_active: Optional[bool] = None


class CommunityClassRead(CommunityClassBase):
    id: int
    created_at: datetime
    updated_at: datetime


class CommunityInvoiceCreate(ORMModel):
    client_id: int
    class_id: int
    units: int = Field(..., gt=0)
    service_date: Optional[date] = None
    notes: Optional[str] = None


class CommunityInvoiceUpdate(ORMModel):
    client_id: Optional[int] = None
    class_id: Optional[int] = None
    units: Optional[int] = Field(default=None, gt=0)
    service_date: Optional[date] = None
    notes: Optional[str] = None


class CommunityInvoiceApprove(ORMModel):
    scheduled_send_at: Optional[datetime] = None


class CommunitySendBatch(ORMModel):
    recipients: List[str] = Field(default_factory=list)
    ids: Optional[List[int]] = None
    scheduled_send_at: Optional[datetime] = None

    @field_validator("recipients")
    @classmethod
    def validate_recipients(cls, value: List[str]) -> List[str]:
        return [validate_email_value(email.strip()) for email in value if email and email.strip()]


class CommunityInvoiceReject(ORMModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class CommunityInvoiceRead(ORMModel):
    id: int
    invoice_label: str
    client_id: int
    client_name: Optional[str] = None
    class_id: int
    class_name: Optional[str] = None
    units: int
    unit_minutes: int
    rate_per_unit: Decimal
    total_amount: Decimal
    status: CommunityInvoiceStatus
    service_date: Optional[date] = None
    notes: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    queued_at: Optional[datetime] = None
    emailed_at: Optional[datetime] = None
    email_error: Optional[str] = None
    created_by_user_id: int
    created_at: datetime
    updated_at: datetime


class PublicCommunityInvoiceRead(ORMModel):
    invoice_label: str
    client_name: Optional[str] = None
    class_name: Optional[str] = None
    units: int
    rate_per_unit: Decimal
    total_amount: Decimal
    service_date: Optional[date] = None
    status: CommunityInvoiceStatus


class CommunityQueueRow(EmailQueueItemRead):
    invoice: Optional[CommunityInvoiceRead] = None
