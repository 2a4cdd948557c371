from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.enums import AuditAction
from abaops.models.master import BcbaInsurance
from abaops.models.user import User
from abaops.schemas.master import BcbaInsuranceCreate, BcbaInsuranceRead, BcbaInsuranceUpdate
from abaops.services.activity import log_audit, snapshot
from abaops.services.master_data import name_exists

router = APIRouter(prefix="/api/bcba-insurance", tags=["bcba-insurance"])

AUDIT_FIELDS = ("name", "rate_per_unit", "unit_minutes", "active")


def _get_or_404(db: Session, bcba_insurance_id: int) -> BcbaInsurance:
    row = db.get(BcbaInsurance, bcba_insurance_id)
    if not row or row.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="BCBA insurance not found")
    return row


@router.get("", response_model=List[BcbaInsuranceRead])
def list_bcba_insurance(
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[BcbaInsuranceRead]:
    rbac.require_permission(current_user, "bcbaInsurance.view", "view")
    query = db.query(BcbaInsurance).filter(BcbaInsurance.not_deleted())
    if active is not None:
        query = query.filter(BcbaInsurance.active.is_(active))
    return [BcbaInsuranceRead.model_validate(row) for row in query.order_by(BcbaInsurance.name.asc()).all()]


@router.get("/{bcba_insurance_id}", response_model=BcbaInsuranceRead)
def get_bcba_insurance(
    bcba_insurance_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BcbaInsuranceRead:
    rbac.require_permission(current_user, "bcbaInsurance.view", "view")
    return BcbaInsuranceRead.model_validate(_get_or_404(db, bcba_insurance_id))


@router.post("", response_model=BcbaInsuranceRead, status_code=status.HTTP_201_CREATED)
def create_bcba_insurance(
    payload: BcbaInsuranceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BcbaInsuranceRead:
    rbac.require_permission(current_user, "bcbaInsurance.manage", "create")
    name = payload.name.strip()
    if name_exists(db, BcbaInsurance, name):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="BCBA insurance with this name already exists")
    row = BcbaInsurance(**payload.model_dump())
    row.name = name
    db.add(row)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="BcbaInsurance",
        entity_id=row.id,
        user_id=current_user.id,
        new_values=snapshot(row, AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(row)
    return BcbaInsuranceRead.model_validate(row)


@router.patch("/{bcba_insurance_id}", response_model=BcbaInsuranceRead)
def update_bcba_insurance(
    bcba_insurance_id: int,
    payload: BcbaInsuranceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BcbaInsuranceRead:
    rbac.require_permission(current_user, "bcbaInsurance.manage", "update")
    row = _get_or_404(db, bcba_insurance_id)
    update_data = payload.model_dump(exclude_unset=True)
    if "name" in update_data:
        update_data["name"] = update_data["name"].strip()
        if name_exists(db, BcbaInsurance, update_data["name"], exclude_id=row.id):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="BCBA insurance with this name already exists")
    before = snapshot(row, AUDIT_FIELDS)
    for field, value in update_data.items():
        setattr(row, field, value)
    db.add(row)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="BcbaInsurance",
        entity_id=row.id,
        user_id=current_user.id,
        old_values=before,
        new_values=snapshot(row, AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(row)
    return BcbaInsuranceRead.model_validate(row)


@router.delete("/{bcba_insurance_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_bcba_insurance(
    bcba_insurance_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "bcbaInsurance.manage", "delete")
    require_destructive_allowed("delete_bcba_insurance")
    row = _get_or_404(db, bcba_insurance_id)
    row.soft_delete()
    row.active = False
    db.add(row)
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="BcbaInsurance",
        entity_id=row.id,
        user_id=current_user.id,
        old_values=snapshot(row, AUDIT_FIELDS),
    )
    db.commit()
