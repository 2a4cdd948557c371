from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from abaops.core.rbac import DASHBOARD_SECTIONS, PERMISSION_KEYS
from abaops.schemas.base import ORMModel


class RolePermissionBase(ORMModel):
    permission_key: str
    can_view: bool = False
    can_create: bool = False
    can_update: bool = False
    can_delete: bool = False
    can_approve: bool = False
    can_export: bool = False

    @field_validator("permission_key")
    @classmethod
    def validate_key(cls, value: str) -> str:
        if value not in PERMISSION_KEYS:
            raise ValueError(f"Unknown permission key: {value}")
        return value


class RolePermissionRead(RolePermissionBase):
    id: int


class CustomRoleCreate(ORMModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    active: bool = True
    permissions: List[RolePermissionBase] = Field(default_factory=list)


class CustomRoleUpdate(ORMModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    active: Optional[bool] = None
    permissions: Optional[List[RolePermissionBase]] = None


class CustomRoleRead(ORMModel):
    id: int
    name: str
    description: Optional[str] = None
    active: bool
    permissions: List[RolePermissionRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class DashboardVisibilityItem(ORMModel):
    section: str
    visible: bool = True

    @field_validator("section")
    @classmethod
    def validate_section(cls, value: str) -> str:
        if value not in DASHBOARD_SECTIONS:
            raise ValueError(f"Unknown dashboard section: {value}")
        return value


class DashboardVisibilityUpdate(ORMModel):
    sections: List[DashboardVisibilityItem]
