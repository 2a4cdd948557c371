from __future__ import annotations

import datetime as dt
import re
from datetime import date, datetime
from typing import List, Optional

from pydantic import Field, field_validator

from abaops.models.enums import FormType
from abaops.schemas.base import ORMModel


TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


class VisitAttestationRow(ORMModel):
    date: dt.date
    provider_id: Optional[int] = None
    parent_signature: Optional[str] = None


class ParentTrainingRow(ORMModel):
    service_date: date
    parent_name: str = ""
    signature: Optional[str] = None


class ParentAbcRow(ORMModel):
    date: dt.date
    start_time: str
    end_time: str
    antecedent: str = Field(..., min_length=1)
    behavior: Optional[str] = None
    consequences: str = Field(..., min_length=1)
    notes: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("Time must be HH:mm")
        return value


class FormSaveBase(ORMModel):
    client_id: int
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)


class VisitAttestationSave(FormSaveBase):
    provider_id: Optional[int] = None
    rows: List[VisitAttestationRow]


class ParentTrainingSignInSave(FormSaveBase):
    rows: List[ParentTrainingRow]


class ParentAbcDataSave(FormSaveBase):
    behavior: Optional[str] = None
    rows: List[ParentAbcRow]


class FormListItem(ORMModel):
    id: int
    form_type: FormType
    client_id: int
    client_name: Optional[str] = None
    provider_id: Optional[int] = None
    provider_name: Optional[str] = None
    month: int
    year: int
    created_at: datetime
    updated_at: datetime


class FormDocumentRead(FormListItem):
    behavior: Optional[str] = None
    rows: List[dict] = Field(default_factory=list)
