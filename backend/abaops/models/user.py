from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from abaops.db.base import Base, IDMixin, SoftDeleteMixin, TimestampMixin
from abaops.models.enums import ADMIN_ROLES, Role


class User(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), default=Role.USER, nullable=False, index=True)
    custom_role_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("custom_roles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    custom_role: Mapped[Optional["CustomRole"]] = relationship(back_populates="users")
    notifications: Mapped[List["Notification"]] = relationship(back_populates="user", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @classmethod
    def has_role(cls, role: Role):
        return cls.role == role

    @classmethod
    def has_any_role(cls, roles: Iterable[Role]):
        return cls.role.in_(list(roles))


class CustomRole(IDMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "custom_roles"

    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    users: Mapped[List[User]] = relationship(back_populates="custom_role")
    permissions: Mapped[List["RolePermission"]] = relationship(
        back_populates="role",
        cascade="all, delete-orphan",
        order_by=lambda: RolePermission.permission_key.asc(),
    )
    dashboard_visibility: Mapped[List["RoleDashboardVisibility"]] = relationship(
        back_populates="role",
        cascade="all, delete-orphan",
    )


class RolePermission(IDMixin, TimestampMixin, Base):
    __tablename__ = "role_permissions"
    __table_args__ = (UniqueConstraint("role_id", "permission_key", name="uq_role_permissions_role_key"),)

    role_id: Mapped[int] = mapped_column(ForeignKey("custom_roles.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_key: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    can_view: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_create: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_update: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_delete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_approve: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_export: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    role: Mapped[CustomRole] = relationship(back_populates="permissions")


class RoleDashboardVisibility(IDMixin, TimestampMixin, Base):
    __tablename__ = "role_dashboard_visibility"
    __table_args__ = (UniqueConstraint("role_id", "section", name="uq_role_dashboard_visibility_role_section"),)

    role_id: Mapped[int] = mapped_column(ForeignKey("custom_roles.id", ondelete="CASCADE"), nullable=False, index=True)
    section: Mapped[str] = mapped_column(String(80), nullable=False)
    visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    role: Mapped[CustomRole] = relationship(back_populates="dashboard_visibility")
