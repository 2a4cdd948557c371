from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from abaops.db.base import Base, IDMixin, SoftDeleteMixin, TimestampMixin, utcnow
from abaops.models.enums import EmailQueueContext, EmailQueueEntityType, EmailQueueStatus


class EmailQueueItem(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Outbound email for an approved timesheet or community invoice.

    One row per entity; the row is drained by a batch send and moves
    QUEUED -> SENDING -> SENT | FAILED. FAILED rows wait for a manual resend.
    """

    __tablename__ = "email_queue_items"
    __table_args__ = (UniqueConstraint("entity_type", "entity_id", name="uq_email_queue_items_entity"),)

    entity_type: Mapped[EmailQueueEntityType] = mapped_column(
        Enum(EmailQueueEntityType, name="email_queue_entity_type"),
        nullable=False,
        index=True,
    )
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    context: Mapped[EmailQueueContext] = mapped_column(
        Enum(EmailQueueContext, name="email_queue_context"),
        default=EmailQueueContext.MAIN,
        nullable=False,
        index=True,
    )
    status: Mapped[EmailQueueStatus] = mapped_column(
        Enum(EmailQueueStatus, name="email_queue_status"),
        default=EmailQueueStatus.QUEUED,
        nullable=False,
        index=True,
    )
    queued_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    queued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    scheduled_send_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    recipient_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    queued_by: Mapped[Optional["User"]] = relationship()
