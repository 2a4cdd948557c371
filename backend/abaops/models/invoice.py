from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from abaops.db.base import Base, IDMixin, SoftDeleteMixin, TimestampMixin
from abaops.models.enums import InvoiceStatus, PaymentMethod


class Invoice(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, name="invoice_status"),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    adjustments: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    outstanding: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    view_token: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True, index=True)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    client: Mapped["Client"] = relationship(back_populates="invoices")
    creator: Mapped["User"] = relationship(foreign_keys=[created_by_user_id])
    entries: Mapped[List["InvoiceEntry"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: InvoiceEntry.id.asc(),
    )
    payments: Mapped[List["InvoicePayment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: InvoicePayment.payment_date.asc(),
    )
    adjustment_rows: Mapped[List["InvoiceAdjustment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: InvoiceAdjustment.created_at.asc(),
    )

    @property
    def client_name(self) -> Optional[str]:
        return self.client.name if self.client else None

    @property
    def total_units(self) -> Decimal:
        return sum((entry.units for entry in self.entries or []), start=Decimal("0.00"))

    @property
    def billable_units(self) -> Decimal:
        return sum((entry.billable_units for entry in self.entries or []), start=Decimal("0.00"))


class InvoiceEntry(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_entries"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    timesheet_id: Mapped[int] = mapped_column(ForeignKey("timesheets.id"), nullable=False, index=True)
    timesheet_entry_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("timesheet_entries.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id"), nullable=False, index=True)
    insurance_id: Mapped[int] = mapped_column(ForeignKey("insurances.id"), nullable=False, index=True)
    service_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    entry_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    units: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    billable_units: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="entries")
    timesheet: Mapped["Timesheet"] = relationship()
    provider: Mapped["Provider"] = relationship()

    @property
    def provider_name(self) -> Optional[str]:
        return self.provider.name if self.provider else None


class InvoicePayment(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_payments"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method"),
        default=PaymentMethod.CHECK,
        nullable=False,
    )
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    invoice: Mapped[Invoice] = relationship(back_populates="payments")


class InvoiceAdjustment(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_adjustments"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    invoice: Mapped[Invoice] = relationship(back_populates="adjustment_rows")
