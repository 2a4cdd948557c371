from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from abaops.models.enums import PaymentMethod, PayrollImportStatus, PayrollRunStatus
from abaops.schemas.base import ORMModel


class PayrollEmployeeBase(ORMModel):
    full_name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None
    scanner_external_id: Optional[str] = None
    default_hourly_rate: Decimal = Field(default=Decimal("0.00"), ge=Decimal("0.00"))
    overtime_rate_multiplier: Decimal = Field(default=Decimal("1.50"), ge=Decimal("1.00"))
    overtime_after_hours: Decimal = Field(default=Decimal("40.00"), gt=Decimal("0.00"))
    active: bool = True
    notes: Optional[str] = None


class PayrollEmployeeCreate(PayrollEmployeeBase):
    pass


class PayrollEmployeeUpdate(ORMModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None
    scanner_external_id: Optional[str] = None
    default_hourly_rate: Optional[Decimal] = Field(default=None, ge=Decimal("0.00"))
    overtime_rate_multiplier: Optional[Decimal] = Field(default=None, ge=Decimal("1.00"))
    overtime_after_hours: Optional[Decimal] = Field(default=None, gt=Decimal("0.00"))
    active: Optional[bool] = None
    notes: Optional[str] = None


class PayrollEmployeeRead(PayrollEmployeeBase):
    id: int
    created_at: datetime
    updated_at: datetime


class PayrollImportRowIn(ORMModel):
    employee_name: Optional[str] = None
    external_id: Optional[str] = None
    work_date: date
    in_time: Optional[str] = None
    out_time: Optional[str] = None
    minutes: Optional[int] = Field(default=None, ge=0)


class PayrollImportCreate(ORMModel):
    original_file_name: Optional[str] = None
    period_start: date
    period_end: date
    rows: List[PayrollImportRowIn] = Field(..., min_length=1)


class PayrollImportRowRead(ORMModel):
    id: int
    employee_name_raw: Optional[str] = None
    employee_external_id_raw: Optional[str] = None
    work_date: date
    in_time: Optional[str] = None
    out_time: Optional[str] = None
    minutes_worked: int
    hours_worked: Decimal
    linked_employee_id: Optional[int] = None


class PayrollImportRead(ORMModel):
    id: int
    original_file_name: Optional[str] = None
    period_start: date
    period_end: date
    status: PayrollImportStatus
    row_count: int
    created_by_user_id: int
    created_at: datetime


class PayrollImportDetail(PayrollImportRead):
    rows: List[PayrollImportRowRead] = Field(default_factory=list)


class PayrollRowLink(ORMModel):
    employee_id: Optional[int] = None


class PayrollRunCreate(ORMModel):
    name: str = Field(..., min_length=1, max_length=255)
    source_import_id: int
    selected_employee_ids: Optional[List[int]] = None
    employee_rates: Dict[int, Decimal] = Field(default_factory=dict)

    @field_validator("employee_rates")
    @classmethod
    def non_negative_rates(cls, value: Dict[int, Decimal]) -> Dict[int, Decimal]:
        for rate in value.values():
            if rate < 0:
                raise ValueError("Hourly rates must be non-negative")
        return value


class PayrollPaymentCreate(ORMModel):
    amount: Decimal = Field(..., gt=Decimal("0.00"))
    payment_date: date
    method: PaymentMethod = PaymentMethod.CHECK
    reference: Optional[str] = None
    notes: Optional[str] = None


class PayrollPaymentRead(ORMModel):
    id: int
    run_line_id: int
    amount: Decimal
    payment_date: date
    method: PaymentMethod
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class PayrollRunLineRead(ORMModel):
    id: int
    employee_id: int
    employee_name: Optional[str] = None
    hourly_rate_used: Decimal
    total_minutes: int
    total_hours: Decimal
    regular_hours: Decimal
    overtime_hours: Decimal
    gross_pay: Decimal
    amount_paid: Decimal
    amount_owed: Decimal
    notes: Optional[str] = None
    payments: List[PayrollPaymentRead] = Field(default_factory=list)


class PayrollRunRead(ORMModel):
    id: int
    name: str
    period_start: date
    period_end: date
    status: PayrollRunStatus
    source_import_id: Optional[int] = None
    created_by_user_id: int
    approved_by_user_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    total_gross: Decimal
    total_paid: Decimal
    total_owed: Decimal
    created_at: datetime


class PayrollRunDetail(PayrollRunRead):
    lines: List[PayrollRunLineRead] = Field(default_factory=list)


class PayrollEmployeeCounts(ORMModel):
    unpaid: int
    partial: int
    paid: int
    total: int


class PayrollPaymentPoint(ORMModel):
    date: dt.date
    amount: Decimal


class PayrollEmployeeBalance(ORMModel):
    employee_id: int
    name: str
    owed: Decimal
    paid: Decimal


class PayrollWaterfallStep(ORMModel):
    category: str
    value: Decimal


class PayrollAnalytics(ORMModel):
    total_gross: Decimal
    total_paid: Decimal
    total_owed: Decimal
    employee_count: PayrollEmployeeCounts
    payments_over_time: List[PayrollPaymentPoint] = Field(default_factory=list)
    owed_vs_paid_by_employee: List[PayrollEmployeeBalance] = Field(default_factory=list)
    waterfall: List[PayrollWaterfallStep] = Field(default_factory=list)
