from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.enums import AuditAction
from abaops.models.master import BCBA
from abaops.models.user import User
from abaops.schemas.master import BCBACreate, BCBARead, BCBAUpdate
from abaops.services.activity import log_audit, snapshot

router = APIRouter(prefix="/api/bcbas", tags=["bcbas"])

AUDIT_FIELDS = ("name", "email", "phone")


def _get_bcba_or_404(db: Session, bcba_id: int) -> BCBA:
    bcba = db.get(BCBA, bcba_id)
    if not bcba or bcba.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="BCBA not found")
    return bcba


@router.get("", response_model=List[BCBARead])
def list_bcbas(
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[BCBARead]:
    rbac.require_permission(current_user, "bcbas.view", "view")
    query = db.query(BCBA).filter(BCBA.not_deleted())
    if search:
        query = query.filter(BCBA.name.ilike(f"%{search.strip()}%"))
    return [BCBARead.model_validate(bcba) for bcba in query.order_by(BCBA.name.asc()).all()]


@router.get("/{bcba_id}", response_model=BCBARead)
def get_bcba(
    bcba_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BCBARead:
    rbac.require_permission(current_user, "bcbas.view", "view")
    return BCBARead.model_validate(_get_bcba_or_404(db, bcba_id))


@router.post("", response_model=BCBARead, status_code=status.HTTP_201_CREATED)
def create_bcba(
    bcba_in: BCBACreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BCBARead:
    rbac.require_permission(current_user, "bcbas.manage", "create")
    bcba = BCBA(**bcba_in.model_dump())
    bcba.name = bcba.name.strip()
    db.add(bcba)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="BCBA",
        entity_id=bcba.id,
        user_id=current_user.id,
        new_values=snapshot(bcba, AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(bcba)
    return BCBARead.model_validate(bcba)


@router.patch("/{bcba_id}", response_model=BCBARead)
def update_bcba(
    bcba_id: int,
    bcba_update: BCBAUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BCBARead:
    rbac.require_permission(current_user, "bcbas.manage", "update")
    bcba = _get_bcba_or_404(db, bcba_id)
    before = snapshot(bcba, AUDIT_FIELDS)
    for field, value in bcba_update.model_dump(exclude_unset=True).items():
        setattr(bcba, field, value)
    db.add(bcba)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="BCBA",
        entity_id=bcba.id,
        user_id=current_user.id,
        old_values=before,
        new_values=snapshot(bcba, AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(bcba)
    return BCBARead.model_validate(bcba)


@router.delete("/{bcba_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_bcba(
    bcba_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "bcbas.manage", "delete")
    require_destructive_allowed("delete_bcba")
    bcba = _get_bcba_or_404(db, bcba_id)
    bcba.soft_delete()
    db.add(bcba)
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="BCBA",
        entity_id=bcba.id,
        user_id=current_user.id,
        old_values=snapshot(bcba, AUDIT_FIELDS),
    )
    db.commit()
