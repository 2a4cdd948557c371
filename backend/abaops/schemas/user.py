from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import Field, field_validator

from abaops.models.enums import Role
from abaops.schemas.base import ORMModel, validate_email_value


class UserBase(ORMModel):
    email: str
    full_name: Optional[str] = None
    role: Role = Role.USER
    custom_role_id: Optional[int] = None
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return validate_email_value(value)


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(ORMModel):
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[Role] = None
    custom_role_id: Optional[int] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(default=None, min_length=8)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return validate_email_value(value)


class UserRead(UserBase):
    id: int
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class Token(ORMModel):
    access_token: str
    token_type: str = "bearer"


class LoginResponse(Token):
    user: UserRead
    permissions: Dict[str, Dict[str, bool]]


class PermissionsResponse(ORMModel):
    role: Role
    permissions: Dict[str, Dict[str, bool]]
    dashboard: Dict[str, bool]


class PasswordChange(ORMModel):
    current_password: str
    new_password: str = Field(..., min_length=8)
