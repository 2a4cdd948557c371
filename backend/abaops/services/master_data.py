from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from abaops.db.base import utcnow
from abaops.models.enums import AuditAction
from abaops.models.master import Client, Insurance, InsuranceRateHistory, Provider
from abaops.models.user import User
from abaops.schemas.base import validate_email_value
from abaops.services.activity import log_audit


logger = logging.getLogger(__name__)


@dataclass
class ImportOutcome:
    created: int = 0
    skipped: int = 0
    errors: List[dict] = field(default_factory=list)

    def skip(self, row: int, error: str) -> None:
        self.skipped += 1
        self.errors.append({"row": row, "error": error})


def _rows(content: str) -> List[dict]:
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    if not reader.fieldnames:
        return []
    reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]
    return [{key: (value or "").strip() for key, value in row.items() if key} for row in reader]


def _email(value: str) -> Optional[str]:
    if not value:
        return None
    return validate_email_value(value)


def name_exists(db: Session, model, name: str, *, exclude_id: Optional[int] = None) -> bool:
    query = db.query(model).filter(func.lower(model.name) == name.strip().lower(), model.not_deleted())
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    return query.first() is not None


def import_providers(db: Session, *, content: str, user: User) -> ImportOutcome:
    """Rows of ``name,email,phone``; duplicates by name are skipped."""
    outcome = ImportOutcome()
    for index, row in enumerate(_rows(content), start=2):
        name = row.get("name", "")
        if not name:
            outcome.skip(index, "Name is required")
            continue
        if name_exists(db, Provider, name):
            outcome.skip(index, f"Provider '{name}' already exists")
            continue
        try:
            email = _email(row.get("email", ""))
        except ValueError as exc:
            outcome.skip(index, str(exc))
            continue
        provider = Provider(name=name, email=email, phone=row.get("phone") or None, active=True)
        db.add(provider)
        db.flush()
        log_audit(
            db,
            action=AuditAction.CREATE,
            entity_type="Provider",
            entity_id=provider.id,
            user_id=user.id,
            metadata={"source": "csv_import"},
        )
        outcome.created += 1
    logger.info("Provider import: created=%s skipped=%s", outcome.created, outcome.skipped)
    return outcome


def import_clients(db: Session, *, content: str, user: User) -> ImportOutcome:
    """Rows of ``name,email,phone,insurance``; the insurance is matched by name."""
    outcome = ImportOutcome()
    for index, row in enumerate(_rows(content), start=2):
        name = row.get("name", "")
        if not name:
            outcome.skip(index, "Name is required")
            continue
        insurance_name = row.get("insurance", "")
        if not insurance_name:
            outcome.skip(index, "Insurance is required")
            continue
        insurance = (
            db.query(Insurance)
            .filter(func.lower(Insurance.name) == insurance_name.lower(), Insurance.not_deleted())
            .first()
        )
        if insurance is None:
            outcome.skip(index, f"Insurance '{insurance_name}' not found")
            continue
        if name_exists(db, Client, name):
            outcome.skip(index, f"Client '{name}' already exists")
            continue
        try:
            email = _email(row.get("email", ""))
        except ValueError as exc:
            outcome.skip(index, str(exc))
            continue
        client = Client(
            name=name,
            email=email,
            phone=row.get("phone") or None,
            insurance_id=insurance.id,
            active=True,
        )
        db.add(client)
        db.flush()
        log_audit(
            db,
            action=AuditAction.CREATE,
            entity_type="Client",
            entity_id=client.id,
            user_id=user.id,
            metadata={"source": "csv_import"},
        )
        outcome.created += 1
    logger.info("Client import: created=%s skipped=%s", outcome.created, outcome.skipped)
    return outcome


def open_rate_history(insurance: Insurance) -> Optional[InsuranceRateHistory]:
    for row in insurance.rate_history:
        if row.effective_to is None:
            return row
    return None


def set_insurance_rate(insurance: Insurance, rate: Decimal) -> bool:
    """Close the open history row and start a new one. False when the rate is unchanged."""
    current = open_rate_history(insurance)
    if current is not None and Decimal(current.rate_per_unit) == Decimal(rate):
        insurance.rate_per_unit = rate
        return False
    now = utcnow()
    if current is not None:
        current.effective_to = now
    insurance.rate_per_unit = rate
    insurance.rate_history.append(InsuranceRateHistory(rate_per_unit=rate, effective_from=now))
    return True
