from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from abaops.db.base import Base, IDMixin, TimestampMixin
from abaops.models.enums import ScheduledJobType


class ScheduledJob(IDMixin, TimestampMixin, Base):
    __tablename__ = "scheduled_jobs"

    job_type: Mapped[ScheduledJobType] = mapped_column(
        Enum(ScheduledJobType, name="scheduled_job_type"),
        unique=True,
        nullable=False,
        index=True,
    )
    schedule: Mapped[str] = mapped_column(String(64), nullable=False, comment="cron expression")
    timezone: Mapped[str] = mapped_column(String(64), default="America/New_York", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    next_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
