from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from abaops.schemas.base import ORMModel, validate_email_value


def _optional_email(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return validate_email_value(value)


class ProviderBase(ORMModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None
    signature: Optional[str] = None
    active: bool = True

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _optional_email(value)


class ProviderCreate(ProviderBase):
    pass


class ProviderUpdate(ORMModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None
    signature: Optional[str] = None
    active: Optional[bool] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _optional_email(value)


class ProviderRead(ProviderBase):
    id: int
    created_at: datetime
    updated_at: datetime


class ClientBase(ORMModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    medicaid_id: Optional[str] = None
    insurance_id: int
    active: bool = True

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _optional_email(value)


class ClientCreate(ClientBase):
    pass


class ClientUpdate(ORMModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    medicaid_id: Optional[str] = None
    insurance_id: Optional[int] = None
    active: Optional[bool] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _optional_email(value)


class ClientRead(ClientBase):
    id: int
    insurance_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BCBABase(ORMModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None
    signature: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _optional_email(value)


class BCBACreate(BCBABase):
    pass


class BCBAUpdate(ORMModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None
    signature: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _optional_email(value)


class BCBARead(BCBABase):
    id: int
    created_at: datetime
    updated_at: datetime


class InsuranceBase(ORMModel):
    name: str = Field(..., min_length=1, max_length=255)
    rate_per_unit: Decimal = Field(..., ge=Decimal("0.00"))
    regular_rate_per_unit: Optional[Decimal] = Field(default=None, ge=Decimal("0.00"))
    bcba_rate_per_unit: Optional[Decimal] = Field(default=None, ge=Decimal("0.00"))
    active: bool = True


class InsuranceCreate(InsuranceBase):
    pass


class InsuranceUpdate(ORMModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    rate_per_unit: Optional[Decimal] = Field(default=None, ge=Decimal("0.00"))
    regular_rate_per_unit: Optional[Decimal] = Field(default=None, ge=Decimal("0.00"))
    bcba_rate_per_unit: Optional[Decimal] = Field(default=None, ge=Decimal("0.00"))
    active: Optional[bool] = None


class InsuranceRateHistoryRead(ORMModel):
    id: int
    rate_per_unit: Decimal
    effective_from: datetime
    effective_to: Optional[datetime] = None


class InsuranceRead(InsuranceBase):
    id: int
    rate_history: List[InsuranceRateHistoryRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class BcbaInsuranceBase(ORMModel):
    name: str = Field(..., min_length=1, max_length=255)
    rate_per_unit: Decimal = Field(..., ge=Decimal("0.00"))
    unit_minutes: int = Field(default=15, gt=0)
    active: bool = True
    notes: Optional[str] = None


class BcbaInsuranceCreate(BcbaInsuranceBase):
    pass


class BcbaInsuranceUpdate(ORMModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    rate_per_unit: Optional[Decimal] = Field(default=None, ge=Decimal("0.00"))
    unit_minutes: Optional[int] = Field(default=None, gt=0)
    active: Optional[bool] = None
    notes: Optional[str] = None


class BcbaInsuranceRead(BcbaInsuranceBase):
    id: int
    created_at: datetime
    updated_at: datetime


class ImportRowError(ORMModel):
    row: int
    error: str


class ImportResult(ORMModel):
    created: int
    skipped: int
    errors: List[ImportRowError] = Field(default_factory=list)
