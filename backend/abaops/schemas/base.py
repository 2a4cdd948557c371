from typing import Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


ItemT = TypeVar("ItemT")


class ListResponse(ORMModel, Generic[ItemT]):
    items: List[ItemT]
    total: int
    page: int
    page_size: int
    has_more: bool


class ActionResult(ORMModel):
    ok: bool
    code: str
    message: str


def validate_email_value(value: str) -> str:
    if "@" not in value:
        raise ValueError("Invalid email address")
    local, _, domain = value.partition("@")
    if not local or not domain:
        raise ValueError("Invalid email address")
    if "." not in domain and not domain.endswith(".local"):
        raise ValueError("Invalid email domain")
    return value.strip().lower()
