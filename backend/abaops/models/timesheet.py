from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from abaops.db.base import Base, IDMixin, SoftDeleteMixin, TimestampMixin
from abaops.models.enums import TimesheetStatus


class Timesheet(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "timesheets"

    timesheet_number: Mapped[Optional[str]] = mapped_column(String(20), unique=True, nullable=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id"), nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    bcba_id: Mapped[int] = mapped_column(ForeignKey("bcbas.id"), nullable=False, index=True)
    insurance_id: Mapped[Optional[int]] = mapped_column(ForeignKey("insurances.id"), nullable=True, index=True)
    bcba_insurance_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bcba_insurances.id"), nullable=True, index=True)
    is_bcba: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    timezone: Mapped[str] = mapped_column(String(64), default="America/New_York", nullable=False)
    service_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    session_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    status: Mapped[TimesheetStatus] = mapped_column(
        Enum(TimesheetStatus, name="timesheet_status"),
        default=TimesheetStatus.DRAFT,
        nullable=False,
        index=True,
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    queued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    emailed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    invoiced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    invoice_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    user: Mapped["User"] = relationship(foreign_keys=[user_id])
    approved_by: Mapped[Optional["User"]] = relationship(foreign_keys=[approved_by_user_id])
    provider: Mapped["Provider"] = relationship(back_populates="timesheets")
    client: Mapped["Client"] = relationship(back_populates="timesheets")
    bcba: Mapped["BCBA"] = relationship(back_populates="timesheets")
    insurance: Mapped[Optional["Insurance"]] = relationship()
    bcba_insurance: Mapped[Optional["BcbaInsurance"]] = relationship()
    invoice: Mapped[Optional["Invoice"]] = relationship(foreign_keys=[invoice_id])
    entries: Mapped[List["TimesheetEntry"]] = relationship(
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by=lambda: [TimesheetEntry.date.asc(), TimesheetEntry.start_time.asc()],
    )

    @property
    def is_editable(self) -> bool:
        return self.status in {TimesheetStatus.DRAFT, TimesheetStatus.REJECTED}

    @property
    def total_minutes(self) -> int:
        return sum(entry.minutes for entry in self.entries or [])

    @property
    def provider_name(self) -> Optional[str]:
        return self.provider.name if self.provider else None

    @property
    def client_name(self) -> Optional[str]:
        return self.client.name if self.client else None

    @property
    def bcba_name(self) -> Optional[str]:
        return self.bcba.name if self.bcba else None


class TimesheetEntry(IDMixin, TimestampMixin, Base):
    __tablename__ = "timesheet_entries"

    timesheet_id: Mapped[int] = mapped_column(ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    units: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    invoiced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    timesheet: Mapped[Timesheet] = relationship(back_populates="entries")
