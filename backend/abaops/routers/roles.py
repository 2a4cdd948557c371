from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, selectinload

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.core.guards import require_destructive_allowed
from abaops.db.session import get_db
from abaops.models.enums import AuditAction
from abaops.models.user import CustomRole, RoleDashboardVisibility, RolePermission, User
from abaops.schemas.role import (
    CustomRoleCreate,
    CustomRoleRead,
    CustomRoleUpdate,
    DashboardVisibilityItem,
    DashboardVisibilityUpdate,
    RolePermissionBase,
)
from abaops.services.activity import log_audit

router = APIRouter(prefix="/api/roles", tags=["roles"])


def _get_role_or_404(db: Session, role_id: int) -> CustomRole:
    role = (
        db.query(CustomRole)
        .options(selectinload(CustomRole.permissions), selectinload(CustomRole.dashboard_visibility))
        .filter(CustomRole.id == role_id, CustomRole.not_deleted())
        .first()
    )
    if not role:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return role


def _name_taken(db: Session, name: str, *, exclude_id: int | None = None) -> bool:
    query = db.query(CustomRole).filter(CustomRole.name == name, CustomRole.not_deleted())
    if exclude_id is not None:
        query = query.filter(CustomRole.id != exclude_id)
    return query.first() is not None


def _permission_rows(items: List[RolePermissionBase]) -> List[RolePermission]:
    seen = set()
    rows: List[RolePermission] = []
    for item in items:
        if item.permission_key in seen:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Duplicate permission key: {item.permission_key}",
            )
        seen.add(item.permission_key)
        rows.append(RolePermission(**item.model_dump()))
    return rows


@router.get("", response_model=List[CustomRoleRead])
def list_roles(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[CustomRoleRead]:
    rbac.require_permission(current_user, "roles.view", "view")
    roles = (
        db.query(CustomRole)
        .options(selectinload(CustomRole.permissions))
        .filter(CustomRole.not_deleted())
        .order_by(CustomRole.name.asc())
        .all()
    )
    return [CustomRoleRead.model_validate(role) for role in roles]


@router.post("", response_model=CustomRoleRead, status_code=status.HTTP_201_CREATED)
def create_role(
    role_in: CustomRoleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CustomRoleRead:
    rbac.require_permission(current_user, "roles.manage", "create")
    name = role_in.name.strip()
    if _name_taken(db, name):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A role with this name already exists")
    role = CustomRole(name=name, description=role_in.description, active=role_in.active)
    role.permissions = _permission_rows(role_in.permissions)
    db.add(role)
    db.flush()
    log_audit(
        db,
        action=AuditAction.CREATE,
        entity_type="Role",
        entity_id=role.id,
        user_id=current_user.id,
        new_values={"name": role.name, "permissions": [row.permission_key for row in role.permissions]},
    )
    db.commit()
    return CustomRoleRead.model_validate(_get_role_or_404(db, role.id))


@router.get("/{role_id}", response_model=CustomRoleRead)
def get_role(
    role_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CustomRoleRead:
    rbac.require_permission(current_user, "roles.view", "view")
    return CustomRoleRead.model_validate(_get_role_or_404(db, role_id))


@router.patch("/{role_id}", response_model=CustomRoleRead)
def update_role(
    role_id: int,
    role_update: CustomRoleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CustomRoleRead:
    rbac.require_permission(current_user, "roles.manage", "update")
    role = _get_role_or_404(db, role_id)
    update_data = role_update.model_dump(exclude_unset=True, exclude={"permissions"})
    if "name" in update_data:
        update_data["name"] = update_data["name"].strip()
        if _name_taken(db, update_data["name"], exclude_id=role.id):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A role with this name already exists")
    for field, value in update_data.items():
        setattr(role, field, value)
    if role_update.permissions is not None:
        # Replace rather than merge; flush the deletes before the unique key is reused.
        role.permissions.clear()
        db.flush()
        role.permissions.extend(_permission_rows(role_update.permissions))
    db.add(role)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="Role",
        entity_id=role.id,
        user_id=current_user.id,
        new_values={**update_data, "permissions": [row.permission_key for row in role.permissions]},
    )
    db.commit()
    db.expire_all()
    return CustomRoleRead.model_validate(_get_role_or_404(db, role.id))


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(
    role_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rbac.require_permission(current_user, "roles.delete", "delete", allow_admin=False)
    require_destructive_allowed("delete_role")
    role = _get_role_or_404(db, role_id)
    assigned = db.query(User).filter(User.custom_role_id == role.id, User.not_deleted()).count()
    if assigned:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Role is assigned to {assigned} user(s) and cannot be deleted",
        )
    role.soft_delete()
    role.active = False
    db.add(role)
    db.flush()
    log_audit(
        db,
        action=AuditAction.DELETE,
        entity_type="Role",
        entity_id=role.id,
        user_id=current_user.id,
        old_values={"name": role.name},
    )
    db.commit()


@router.get("/{role_id}/dashboard-visibility", response_model=List[DashboardVisibilityItem])
def get_dashboard_visibility(
    role_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[DashboardVisibilityItem]:
    rbac.require_permission(current_user, "roles.view", "view")
    role = _get_role_or_404(db, role_id)
    stored = {row.section: row.visible for row in role.dashboard_visibility}
    return [
        DashboardVisibilityItem(section=section, visible=stored.get(section, True))
        for section in rbac.DASHBOARD_SECTIONS
    ]


@router.put("/{role_id}/dashboard-visibility", response_model=List[DashboardVisibilityItem])
def set_dashboard_visibility(
    role_id: int,
    payload: DashboardVisibilityUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[DashboardVisibilityItem]:
    rbac.require_permission(current_user, "roles.manage", "update")
    role = _get_role_or_404(db, role_id)
    existing = {row.section: row for row in role.dashboard_visibility}
    for item in payload.sections:
        row = existing.get(item.section)
        if row is None:
            row = RoleDashboardVisibility(section=item.section, visible=item.visible)
            role.dashboard_visibility.append(row)
            existing[item.section] = row
        else:
            row.visible = item.visible
    db.add(role)
    db.flush()
    log_audit(
        db,
        action=AuditAction.UPDATE,
        entity_type="RoleDashboardVisibility",
        entity_id=role.id,
        user_id=current_user.id,
        new_values={item.section: item.visible for item in payload.sections},
    )
    db.commit()
    return [
        DashboardVisibilityItem(section=section, visible=existing[section].visible if section in existing else True)
        for section in rbac.DASHBOARD_SECTIONS
    ]
