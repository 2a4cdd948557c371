from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from abaops.db.base import Base, IDMixin, SoftDeleteMixin, TimestampMixin


class Provider(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "providers"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    timesheets: Mapped[List["Timesheet"]] = relationship(back_populates="provider")


class Insurance(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "insurances"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    rate_per_unit: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    regular_rate_per_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    bcba_rate_per_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    clients: Mapped[List["Client"]] = relationship(back_populates="insurance")
    rate_history: Mapped[List["InsuranceRateHistory"]] = relationship(
        back_populates="insurance",
        cascade="all, delete-orphan",
        order_by=lambda: InsuranceRateHistory.effective_from.asc(),
    )


class InsuranceRateHistory(IDMixin, TimestampMixin, Base):
    __tablename__ = "insurance_rate_history"

    insurance_id: Mapped[int] = mapped_column(ForeignKey("insurances.id", ondelete="CASCADE"), nullable=False, index=True)
    rate_per_unit: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    effective_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    insurance: Mapped[Insurance] = relationship(back_populates="rate_history")


class BcbaInsurance(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "bcba_insurances"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    rate_per_unit: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    unit_minutes: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Client(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    medicaid_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    insurance_id: Mapped[int] = mapped_column(ForeignKey("insurances.id"), nullable=False, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    insurance: Mapped[Insurance] = relationship(back_populates="clients")
    timesheets: Mapped[List["Timesheet"]] = relationship(back_populates="client")
    invoices: Mapped[List["Invoice"]] = relationship(back_populates="client")

    @property
    def insurance_name(self) -> Optional[str]:
        return self.insurance.name if self.insurance else None


class BCBA(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "bcbas"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    timesheets: Mapped[List["Timesheet"]] = relationship(back_populates="bcba")
