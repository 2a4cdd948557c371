from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from abaops.db.base import Base, IDMixin, SoftDeleteMixin, TimestampMixin
from abaops.models.enums import CommunityClientStatus, CommunityInvoiceStatus


class CommunityClient(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "community_clients"

    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[CommunityClientStatus] = mapped_column(
        Enum(CommunityClientStatus, name="community_client_status"),
        default=CommunityClientStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    invoices: Mapped[List["CommunityInvoice"]] = relationship(back_populates="client")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class CommunityClass(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "community_classes"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    rate_per_unit: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    invoices: Mapped[List["CommunityInvoice"]] = relationship(back_populates="community_class")


class CommunityInvoice(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "community_invoices"

    client_id: Mapped[int] = mapped_column(ForeignKey("community_clients.id"), nullable=False, index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey("community_classes.id"), nullable=False, index=True)
    units: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    rate_per_unit: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[CommunityInvoiceStatus] = mapped_column(
        Enum(CommunityInvoiceStatus, name="community_invoice_status"),
        default=CommunityInvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )
    service_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    queued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    emailed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    email_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    view_token: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True, index=True)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    client: Mapped[CommunityClient] = relationship(back_populates="invoices")
    community_class: Mapped[CommunityClass] = relationship(back_populates="invoices")

    @property
    def client_name(self) -> Optional[str]:
        return self.client.full_name if self.client else None

    @property
    def class_name(self) -> Optional[str]:
        return self.community_class.name if self.community_class else None

    @property
    def invoice_label(self) -> str:
        return f"CI-{self.id:05d}"
