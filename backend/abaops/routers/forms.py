from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.db.session import get_db
from abaops.models.enums import FormType
from abaops.models.forms import FormDocument
from abaops.models.user import User
from abaops.schemas.forms import (
    FormDocumentRead,
    FormListItem,
    ParentAbcDataSave,
    ParentTrainingSignInSave,
    VisitAttestationSave,
)
from abaops.services import forms as forms_service

router = APIRouter(prefix="/api/forms", tags=["forms"])


def _service_error(exc: forms_service.FormError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _get_form_or_404(db: Session, form_id: int, form_type: Optional[FormType] = None) -> FormDocument:
    form = forms_service.get_form(db, form_id)
    if form is None or (form_type is not None and form.form_type != form_type):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Form not found")
    return form


def _save(db: Session, form_type: FormType, payload, user: User) -> FormDocumentRead:
    rbac.require_permission(user, "forms.manage", "create")
    try:
        form = forms_service.save_form(db, form_type=form_type, payload=payload, user=user)
    except forms_service.FormError as exc:
        db.rollback()
        raise _service_error(exc)
    db.commit()
    return FormDocumentRead.model_validate(_get_form_or_404(db, form.id))


def _update(db: Session, form_type: FormType, form_id: int, payload, user: User) -> FormDocumentRead:
    rbac.require_permission(user, "forms.manage", "update")
    form = _get_form_or_404(db, form_id, form_type)
    try:
        forms_service.update_form(db, form=form, payload=payload, user=user)
    except forms_service.FormError as exc:
        db.rollback()
        raise _service_error(exc)
    db.commit()
    return FormDocumentRead.model_validate(_get_form_or_404(db, form_id))


@router.get("", response_model=List[FormListItem])
def list_forms(
    form_type: Optional[FormType] = Query(None, alias="type"),
    client_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[FormListItem]:
    rbac.require_permission(current_user, "forms.view", "view")
    forms = forms_service.list_forms(db, form_type=form_type, client_id=client_id)
    return [FormListItem.model_validate(form) for form in forms]


@router.get("/lookup", response_model=Optional[FormDocumentRead])
def lookup_form(
    form_type: FormType = Query(...),
    client_id: int = Query(...),
    month: int = Query(..., ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Optional[FormDocumentRead]:
    rbac.require_permission(current_user, "forms.view", "view")
    form = forms_service.live_form(
        db,
        form_type=form_type,
        client_id=client_id,
        month=month,
        year=year or date.today().year,
    )
    return FormDocumentRead.model_validate(form) if form else None


@router.post("/visit-attestation", response_model=FormDocumentRead, status_code=status.HTTP_201_CREATED)
def save_visit_attestation(
    payload: VisitAttestationSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FormDocumentRead:
    return _save(db, FormType.VISIT_ATTESTATION, payload, current_user)


@router.put("/visit-attestation/{form_id}", response_model=FormDocumentRead)
def update_visit_attestation(
    form_id: int,
    payload: VisitAttestationSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FormDocumentRead:
    return _update(db, FormType.VISIT_ATTESTATION, form_id, payload, current_user)


@router.post("/parent-training-sign-in", response_model=FormDocumentRead, status_code=status.HTTP_201_CREATED)
def save_parent_training_sign_in(
    payload: ParentTrainingSignInSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FormDocumentRead:
    return _save(db, FormType.PARENT_TRAINING_SIGN_IN, payload, current_user)


@router.put("/parent-training-sign-in/{form_id}", response_model=FormDocumentRead)
def update_parent_training_sign_in(
    form_id: int,
    payload: ParentTrainingSignInSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FormDocumentRead:
    return _update(db, FormType.PARENT_TRAINING_SIGN_IN, form_id, payload, current_user)


@router.post("/parent-abc-data", response_model=FormDocumentRead, status_code=status.HTTP_201_CREATED)
def save_parent_abc_data(
    payload: ParentAbcDataSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FormDocumentRead:
    return _save(db, FormType.PARENT_ABC_DATA, payload, current_user)


@router.put("/parent-abc-data/{form_id}", response_model=FormDocumentRead)
def update_parent_abc_data(
    form_id: int,
    payload: ParentAbcDataSave,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FormDocumentRead:
    return _update(db, FormType.PARENT_ABC_DATA, form_id, payload, current_user)


@router.get("/{form_id}", response_model=FormDocumentRead)
def get_form(
    form_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FormDocumentRead:
    rbac.require_permission(current_user, "forms.view", "view")
    return FormDocumentRead.model_validate(_get_form_or_404(db, form_id))


@router.delete("/{form_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_form(
    form_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    rbac.require_permission(current_user, "forms.manage", "delete")
    form = _get_form_or_404(db, form_id)
    forms_service.delete_form(db, form=form, user=current_user)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
