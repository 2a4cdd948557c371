from __future__ import annotations

from typing import Optional

from sqlalchemy import JSON, Enum, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from abaops.db.base import Base, IDMixin, SoftDeleteMixin, TimestampMixin
from abaops.models.enums import FormType


class FormDocument(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Monthly BCBA paperwork for one client. Saving again replaces the live copy."""

    __tablename__ = "form_documents"

    form_type: Mapped[FormType] = mapped_column(Enum(FormType, name="form_type"), nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    provider_id: Mapped[Optional[int]] = mapped_column(ForeignKey("providers.id"), nullable=True, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    behavior: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rows: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    client: Mapped["Client"] = relationship()
    provider: Mapped[Optional["Provider"]] = relationship()

    @property
    def client_name(self) -> Optional[str]:
        return self.client.name if self.client else None

    @property
    def provider_name(self) -> Optional[str]:
        return self.provider.name if self.provider else None
