from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session, selectinload

from abaops.models.enums import AuditAction, FormType
from abaops.models.forms import FormDocument
from abaops.models.master import Client, Provider
from abaops.models.user import User
from abaops.services.activity import log_audit


logger = logging.getLogger(__name__)

LIST_LIMIT = 300
AUDIT_ENTITY = "FormDocument"

# Row field holding the service date, per form type.
ROW_DATE_FIELDS = {
    FormType.VISIT_ATTESTATION: "date",
    FormType.PARENT_TRAINING_SIGN_IN: "service_date",
    FormType.PARENT_ABC_DATA: "date",
}


class FormError(ValueError):
    def __init__(self, message: str, *, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _forms_query(db: Session):
    return (
        db.query(FormDocument)
        .options(selectinload(FormDocument.client), selectinload(FormDocument.provider))
        .filter(FormDocument.not_deleted())
    )


def get_form(db: Session, form_id: int) -> Optional[FormDocument]:
    return _forms_query(db).filter(FormDocument.id == form_id).first()


def list_forms(
    db: Session,
    *,
    form_type: Optional[FormType] = None,
    client_id: Optional[int] = None,
    limit: int = LIST_LIMIT,
) -> List[FormDocument]:
    query = _forms_query(db)
    if form_type is not None:
        query = query.filter(FormDocument.form_type == form_type)
    if client_id is not None:
        query = query.filter(FormDocument.client_id == client_id)
    return query.order_by(FormDocument.updated_at.desc(), FormDocument.id.desc()).limit(limit).all()


def live_form(
    db: Session,
    *,
    form_type: FormType,
    client_id: int,
    month: int,
    year: int,
    exclude_id: Optional[int] = None,
) -> Optional[FormDocument]:
    query = _forms_query(db).filter(
        FormDocument.form_type == form_type,
        FormDocument.client_id == client_id,
        FormDocument.month == month,
        FormDocument.year == year,
    )
    if exclude_id is not None:
        query = query.filter(FormDocument.id != exclude_id)
    return query.first()


def _active_client(db: Session, client_id: int) -> Client:
    client = db.get(Client, client_id)
    if client is None or client.deleted_at is not None:
        raise FormError("Client not found")
    return client


def _check_providers(db: Session, provider_ids: Sequence[int]) -> None:
    wanted = set(provider_ids)
    if not wanted:
        return
    found = {
        provider_id
        for (provider_id,) in db.query(Provider.id).filter(Provider.id.in_(wanted), Provider.not_deleted()).all()
    }
    missing = sorted(wanted - found)
    if missing:
        raise FormError(f"Provider not found: {missing[0]}")


def _check_row_dates(form_type: FormType, rows: Sequence[dict], *, month: int, year: int) -> None:
    field = ROW_DATE_FIELDS[form_type]
    for index, row in enumerate(rows, start=1):
        value = date.fromisoformat(row[field])
        if value.month != month or value.year != year:
            raise FormError(f"Row {index}: {value.isoformat()} is outside {month}/{year}")


def _rows(form_type: FormType, payload) -> List[dict]:
    rows = [row.model_dump(mode="json") for row in payload.rows]
    if form_type == FormType.VISIT_ATTESTATION:
        for row in rows:
            row["provider_id"] = payload.provider_id or row.get("provider_id")
            if row["provider_id"] is None:
                raise FormError("Each visit row needs a provider")
    elif form_type == FormType.PARENT_ABC_DATA:
        behavior = (payload.behavior or "").strip()
        for row in rows:
            row["behavior"] = behavior or (row.get("behavior") or "")
    return rows


def _validated_rows(db: Session, form_type: FormType, payload) -> List[dict]:
    _active_client(db, payload.client_id)
    rows = _rows(form_type, payload)
    _check_row_dates(form_type, rows, month=payload.month, year=payload.year)
    provider_ids = [row["provider_id"] for row in rows if row.get("provider_id")]
    if getattr(payload, "provider_id", None):
        provider_ids.append(payload.provider_id)
    _check_providers(db, provider_ids)
    return rows


def _retire(db: Session, form: FormDocument, *, replaced_by: Optional[int], user: User) -> None:
    form.soft_delete()
    db.add(form)
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type=AUDIT_ENTITY,
        entity_id=form.id,
        user_id=user.id,
        metadata={"form_type": form.form_type.value, "replaced_by": replaced_by},
    )


def save_form(db: Session, *, form_type: FormType, payload, user: User) -> FormDocument:
    """Store a new copy of the form; the previous live copy for the same client/month/year is soft-deleted."""
    rows = _validated_rows(db, form_type, payload)
    previous = live_form(db, form_type=form_type, client_id=payload.client_id, month=payload.month, year=payload.year)
    form = FormDocument(
        form_type=form_type,
        client_id=payload.client_id,
        provider_id=getattr(payload, "provider_id", None),
        month=payload.month,
        year=payload.year,
        behavior=(getattr(payload, "behavior", None) or None),
        rows=rows,
        created_by_user_id=user.id,
    )
    db.add(form)
    db.flush()
    if previous is not None:
        _retire(db, previous, replaced_by=form.id, user=user)
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type=AUDIT_ENTITY,
        entity_id=form.id,
        user_id=user.id,
        metadata={
            "form_type": form_type.value,
            "client_id": form.client_id,
            "period": f"{form.month}/{form.year}",
            "replaced_form_id": previous.id if previous else None,
        },
    )
    db.flush()
    logger.info("Saved %s form %s for client %s (%s/%s)", form_type.value, form.id, form.client_id, form.month, form.year)
    return form


def update_form(db: Session, *, form: FormDocument, payload, user: User) -> FormDocument:
    rows = _validated_rows(db, form.form_type, payload)
    other = live_form(
        db,
        form_type=form.form_type,
        client_id=payload.client_id,
        month=payload.month,
        year=payload.year,
        exclude_id=form.id,
    )
    if other is not None:
        _retire(db, other, replaced_by=form.id, user=user)
    form.client_id = payload.client_id
    form.month = payload.month
    form.year = payload.year
    form.rows = rows
    if form.form_type == FormType.VISIT_ATTESTATION:
        form.provider_id = payload.provider_id
    if form.form_type == FormType.PARENT_ABC_DATA:
        form.behavior = payload.behavior or None
    db.add(form)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type=AUDIT_ENTITY,
        entity_id=form.id,
        user_id=user.id,
        metadata={"form_type": form.form_type.value, "rows": len(rows)},
    )
    return form


def delete_form(db: Session, *, form: FormDocument, user: User) -> None:
    _retire(db, form, replaced_by=None, user=user)
    db.flush()
