from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from abaops.db.base import Base, IDMixin, SoftDeleteMixin, TimestampMixin
from abaops.models.enums import PaymentMethod, PayrollImportStatus, PayrollRunStatus


class PayrollEmployee(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "payroll_employees"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    scanner_external_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    default_hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    overtime_rate_multiplier: Mapped[Decimal] = mapped_column(Numeric(4, 2), default=Decimal("1.50"), nullable=False)
    overtime_after_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("40.00"), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class PayrollImport(IDMixin, TimestampMixin, Base):
    __tablename__ = "payroll_imports"

    original_file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[PayrollImportStatus] = mapped_column(
        Enum(PayrollImportStatus, name="payroll_import_status"),
        default=PayrollImportStatus.DRAFT,
        nullable=False,
    )
    row_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    rows: Mapped[List["PayrollImportRow"]] = relationship(
        back_populates="payroll_import",
        cascade="all, delete-orphan",
        order_by=lambda: [PayrollImportRow.work_date.asc(), PayrollImportRow.id.asc()],
    )


class PayrollImportRow(IDMixin, TimestampMixin, Base):
    __tablename__ = "payroll_import_rows"

    import_id: Mapped[int] = mapped_column(ForeignKey("payroll_imports.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_name_raw: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    employee_external_id_raw: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    in_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    out_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    minutes_worked: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hours_worked: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0.00"), nullable=False)
    linked_employee_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payroll_employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    payroll_import: Mapped[PayrollImport] = relationship(back_populates="rows")
    linked_employee: Mapped[Optional[PayrollEmployee]] = relationship()


class PayrollRun(IDMixin, TimestampMixin, Base):
    __tablename__ = "payroll_runs"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    period_end: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[PayrollRunStatus] = mapped_column(
        Enum(PayrollRunStatus, name="payroll_run_status"),
        default=PayrollRunStatus.DRAFT,
        nullable=False,
        index=True,
    )
    source_import_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payroll_imports.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    approved_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    total_gross: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_owed: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    source_import: Mapped[Optional[PayrollImport]] = relationship()
    lines: Mapped[List["PayrollRunLine"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by=lambda: PayrollRunLine.id.asc(),
    )


class PayrollRunLine(IDMixin, TimestampMixin, Base):
    __tablename__ = "payroll_run_lines"
    __table_args__ = (UniqueConstraint("run_id", "employee_id", name="uq_payroll_run_lines_run_employee"),)

    run_id: Mapped[int] = mapped_column(ForeignKey("payroll_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("payroll_employees.id"), nullable=False, index=True)
    hourly_rate_used: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0.00"), nullable=False)
    regular_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0.00"), nullable=False)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0.00"), nullable=False)
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    amount_owed: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    run: Mapped[PayrollRun] = relationship(back_populates="lines")
    employee: Mapped[PayrollEmployee] = relationship()
    payments: Mapped[List["PayrollPayment"]] = relationship(
        back_populates="run_line",
        cascade="all, delete-orphan",
        order_by=lambda: PayrollPayment.payment_date.asc(),
    )

    @property
    def employee_name(self) -> Optional[str]:
        return self.employee.full_name if self.employee else None


class PayrollPayment(IDMixin, TimestampMixin, Base):
    __tablename__ = "payroll_payments"

    run_line_id: Mapped[int] = mapped_column(ForeignKey("payroll_run_lines.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method"),
        default=PaymentMethod.CHECK,
        nullable=False,
    )
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    run_line: Mapped[PayrollRunLine] = relationship(back_populates="payments")
