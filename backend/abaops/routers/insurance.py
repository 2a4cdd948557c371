from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session, selectinload

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.enums import AuditAction
from abaops.models.master import Insurance
from abaops.models.user import User
from abaops.schemas.master import InsuranceCreate, InsuranceRead, InsuranceUpdate
from abaops.services.activity import log_audit, snapshot
from abaops.services.master_data import name_exists, set_insurance_rate

router = APIRouter(prefix="/api/insurance", tags=["insurance"])

AUDIT_FIELDS = ("name", "rate_per_unit", "regular_rate_per_unit", "bcba_rate_per_unit", "active")


def _get_insurance_or_404(db: Session, insurance_id: int) -> Insurance:
    insurance = (
        db.query(Insurance)
        .options(selectinload(Insurance.rate_history))
        .filter(Insurance.id == insurance_id, Insurance.not_deleted())
        .first()
    )
    if not insurance:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Insurance not found")
    return insurance


@router.get("", response_model=List[InsuranceRead])
def list_insurance(
    search: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[InsuranceRead]:
    rbac.require_permission(current_user, "insurance.view", "view")
    query = db.query(Insurance).options(selectinload(Insurance.rate_history)).filter(Insurance.not_deleted())
    if search:
        query = query.filter(Insurance.name.ilike(f"%{search.strip()}%"))
    if active is not None:
        query = query.filter(Insurance.active.is_(active))
    return [InsuranceRead.model_validate(row) for row in query.order_by(Insurance.name.asc()).all()]


@router.get("/{insurance_id}", response_model=InsuranceRead)
def get_insurance(
    insurance_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InsuranceRead:
    rbac.require_permission(current_user, "insurance.view", "view")
    return InsuranceRead.model_validate(_get_insurance_or_404(db, insurance_id))


@router.post("", response_model=InsuranceRead, status_code=status.HTTP_201_CREATED)
def create_insurance(
    insurance_in: InsuranceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InsuranceRead:
    rbac.require_admin(current_user)
    name = insurance_in.name.strip()
    if name_exists(db, Insurance, name):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insurance with this name already exists")
    insurance = Insurance(**insurance_in.model_dump(exclude={"rate_per_unit"}))
    insurance.name = name
    set_insurance_rate(insurance, insurance_in.rate_per_unit)
    db.add(insurance)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="Insurance",
        entity_id=insurance.id,
        user_id=current_user.id,
        new_values=snapshot(insurance, AUDIT_FIELDS),
    )
    db.commit()
    return InsuranceRead.model_validate(_get_insurance_or_404(db, insurance.id))


@router.patch("/{insurance_id}", response_model=InsuranceRead)
def update_insurance(
    insurance_id: int,
    insurance_update: InsuranceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InsuranceRead:
    rbac.require_admin(current_user)
    insurance = _get_insurance_or_404(db, insurance_id)
    update_data = insurance_update.model_dump(exclude_unset=True)
    if "name" in update_data:
        update_data["name"] = update_data["name"].strip()
        if name_exists(db, Insurance, update_data["name"], exclude_id=insurance.id):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insurance with this name already exists")
    before = snapshot(insurance, AUDIT_FIELDS)
    rate = update_data.pop("rate_per_unit", None)
    for field, value in update_data.items():
        setattr(insurance, field, value)
    rate_changed = set_insurance_rate(insurance, rate) if rate is not None else False
    db.add(insurance)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="Insurance",
        entity_id=insurance.id,
        user_id=current_user.id,
        old_values=before,
        new_values=snapshot(insurance, AUDIT_FIELDS),
        metadata={"rate_changed": rate_changed},
    )
    db.commit()
    db.expire_all()
    return InsuranceRead.model_validate(_get_insurance_or_404(db, insurance.id))


@router.delete("/{insurance_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_insurance(
    insurance_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_admin(current_user)
    require_destructive_allowed("delete_insurance")
    insurance = _get_insurance_or_404(db, insurance_id)
    insurance.soft_delete()
    insurance.active = False
    db.add(insurance)
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="Insurance",
        entity_id=insurance.id,
        user_id=current_user.id,
        old_values=snapshot(insurance, AUDIT_FIELDS),
    )
    db.commit()
