from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.core.security import get_password_hash
from abaops.db.session import get_db
from abaops.models.enums import AuditAction, Role
from abaops.models.user import CustomRole, User
from abaops.schemas.user import UserCreate, UserRead, UserUpdate
from abaops.services.activity import log_audit, snapshot

router = APIRouter(prefix="/api/users", tags=["users"])

AUDIT_FIELDS = ("email", "full_name", "role", "custom_role_id", "is_active")


def _require_manage_users(actor: User) -> None:
    if not rbac.is_admin(actor) and not rbac.has_permission(actor, "users.manage", "update"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorised to manage users")


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user or user.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _validate_role(db: Session, actor: User, role: Role, custom_role_id: Optional[int]) -> None:
    if role == Role.SUPER_ADMIN and not rbac.is_super_admin(actor):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only a super admin can grant SUPER_ADMIN")
    if role == Role.CUSTOM:
        if not custom_role_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="custom_role_id is required for CUSTOM users")
        custom_role = db.get(CustomRole, custom_role_id)
        if not custom_role or custom_role.deleted_at is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid custom_role_id")
    elif custom_role_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="custom_role_id is only allowed for CUSTOM users")


@router.get("", response_model=List[UserRead])
def list_users(
    search: Optional[str] = Query(None),
    role: Optional[Role] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[UserRead]:
    _require_manage_users(current_user)
    query = db.query(User).filter(User.not_deleted())
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(User.email.ilike(term), User.full_name.ilike(term)))
    if role:
        query = query.filter(User.has_role(role))
    if active is not None:
        query = query.filter(User.is_active.is_(active))
    users = query.order_by(User.created_at.asc(), User.id.asc()).all()
    return [UserRead.model_validate(user) for user in users]


@router.get("/{user_id}", response_model=UserRead)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserRead:
    _require_manage_users(current_user)
    return UserRead.model_validate(_get_user_or_404(db, user_id))


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    user_in: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserRead:
    _require_manage_users(current_user)
    _validate_role(db, current_user, user_in.role, user_in.custom_role_id)
    existing = db.query(User).filter(User.email == user_in.email).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User with this email already exists")

    user = User(
        email=user_in.email,
        hashed_password=get_password_hash(user_in.password),
        full_name=user_in.full_name,
        role=user_in.role,
        custom_role_id=user_in.custom_role_id,
        is_active=user_in.is_active,
    )
    db.add(user)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="User",
        entity_id=user.id,
        user_id=current_user.id,
        new_values=snapshot(user, AUDIT_FIELDS),
    )
    db.commit()
    db.refresh(user)
    return UserRead.model_validate(user)


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    user_update: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserRead:
    _require_manage_users(current_user)
    user = _get_user_or_404(db, user_id)
    if rbac.is_super_admin(user) and not rbac.is_super_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only a super admin can edit a super admin")

    update_data = user_update.model_dump(exclude_unset=True)
    role = update_data.get("role", user.role)
    custom_role_id = update_data.get("custom_role_id", user.custom_role_id if role == Role.CUSTOM else None)
    if "role" in update_data or "custom_role_id" in update_data:
        _validate_role(db, current_user, role, custom_role_id)
        update_data["custom_role_id"] = custom_role_id
    if "email" in update_data and update_data["email"] != user.email:
        taken = db.query(User).filter(User.email == update_data["email"], User.id != user.id).first()
        if taken:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User with this email already exists")
    if user.id == current_user.id and update_data.get("is_active") is False:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate yourself")

    before = snapshot(user, AUDIT_FIELDS)
    password = update_data.pop("password", None)
    for field, value in update_data.items():
        setattr(user, field, value)
    if password:
        user.hashed_password = get_password_hash(password)
    db.add(user)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="User",
        entity_id=user.id,
        user_id=current_user.id,
        old_values=before,
        new_values=snapshot(user, AUDIT_FIELDS),
        metadata={"password_changed": bool(password)},
    )
    db.commit()
    db.refresh(user)
    return UserRead.model_validate(user)


def _set_active(db: Session, *, user: User, active: bool, actor: User) -> User:
    if user.id == actor.id and not active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate yourself")
    user.is_active = active
    db.add(user)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="User",
        entity_id=user.id,
        user_id=actor.id,
        new_values={"is_active": active},
    )
    db.commit()
    db.refresh(user)
    return user


@router.post("/{user_id}/activate", response_model=UserRead)
def activate_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserRead:
    _require_manage_users(current_user)
    user = _set_active(db, user=_get_user_or_404(db, user_id), active=True, actor=current_user)
    return UserRead.model_validate(user)


@router.post("/{user_id}/deactivate", response_model=UserRead)
def deactivate_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserRead:
    _require_manage_users(current_user)
    user = _set_active(db, user=_get_user_or_404(db, user_id), active=False, actor=current_user)
    return UserRead.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "users.delete", "delete", allow_admin=False)
    require_destructive_allowed("delete_user")
    user = _get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot delete yourself")
    before = snapshot(user, AUDIT_FIELDS)
    user.soft_delete()
    user.is_active = False
    db.add(user)
    db.flush()
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="User",
        entity_id=user.id,
        user_id=current_user.id,
        old_values=before,
    )
    db.commit()
