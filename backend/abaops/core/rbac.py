from __future__ import annotations

from typing import Dict, Iterable, Optional

from fastapi import HTTPException, status

from abaops.models.enums import ADMIN_ROLES, Role


ACTIONS = ("view", "create", "update", "delete", "approve", "export")

PERMISSION_KEYS: tuple[str, ...] = (
    "dashboard.providers",
    "dashboard.clients",
    "dashboard.timesheets",
    "dashboard.invoices",
    "dashboard.reports",
    "dashboard.analytics",
    "dashboard.users",
    "dashboard.bcbas",
    "dashboard.insurance",
    "dashboard.payroll",
    "dashboard.community",
    "providers.view",
    "providers.manage",
    "clients.view",
    "clients.manage",
    "bcbas.view",
    "bcbas.manage",
    "insurance.view",
    "insurance.manage",
    "bcbaInsurance.view",
    "bcbaInsurance.manage",
    "timesheets.view",
    "timesheets.create",
    "timesheets.update",
    "timesheets.delete",
    "timesheets.submit",
    "timesheets.approve",
    "bcbaTimesheets.view",
    "bcbaTimesheets.approve",
    "invoices.view",
    "invoices.create",
    "invoices.update",
    "invoices.delete",
    "invoices.payments",
    "invoices.export",
    "emailQueue.view",
    "emailQueue.sendBatch",
    "emailQueue.delete",
    "community.view",
    "community.manage",
    "community.invoices.approve",
    "community.invoices.emailqueue.view",
    "community.invoices.emailqueue.send",
    "community.invoices.emailqueue.delete",
    "payroll.view",
    "payroll.manage",
    "payroll.export",
    "payroll.reports",
    "forms.view",
    "forms.manage",
    "reports.view",
    "reports.export",
    "users.view",
    "users.manage",
    "users.delete",
    "roles.view",
    "roles.manage",
    "roles.delete",
)

DASHBOARD_SECTIONS = tuple(key.split(".", 1)[1] for key in PERMISSION_KEYS if key.startswith("dashboard."))

# ADMIN gets every key except these.
ADMIN_EXCLUDED_KEYS = frozenset({"users.delete", "roles.delete"})

USER_KEYS = frozenset(
    {
        "timesheets.view",
        "timesheets.create",
        "timesheets.update",
        "timesheets.submit",
        "invoices.view",
        "dashboard.timesheets",
        "dashboard.invoices",
    }
)

PermissionFlags = Dict[str, bool]


def _flags(value: bool = False) -> PermissionFlags:
    return {action: value for action in ACTIONS}


def _user_flags(key: str) -> PermissionFlags:
    flags = _flags(False)
    flags["view"] = True
    flags["create"] = key.endswith(".create")
    flags["update"] = key.endswith(".update") or key.endswith(".submit")
    return flags


def _coerce_role(value: Role | str | None) -> Optional[Role]:
    if value is None:
        return None
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value))
    except ValueError:
        return None


def resolve_permissions(user) -> Dict[str, PermissionFlags]:
    """Permission map for ``user`` keyed by dotted permission name."""
    role = _coerce_role(getattr(user, "role", None))
    if role == Role.SUPER_ADMIN:
        return {key: _flags(True) for key in PERMISSION_KEYS}
    if role == Role.ADMIN:
        return {key: _flags(True) for key in PERMISSION_KEYS if key not in ADMIN_EXCLUDED_KEYS}
    if role == Role.CUSTOM:
        custom_role = getattr(user, "custom_role", None)
        if not custom_role or not custom_role.active or custom_role.deleted_at is not None:
            return {}
        resolved: Dict[str, PermissionFlags] = {}
        for row in custom_role.permissions:
            resolved[row.permission_key] = {
                "view": bool(row.can_view),
                "create": bool(row.can_create),
                "update": bool(row.can_update),
                "delete": bool(row.can_delete),
                "approve": bool(row.can_approve),
                "export": bool(row.can_export),
            }
        return resolved
    if role == Role.USER:
        return {key: _user_flags(key) for key in PERMISSION_KEYS if key in USER_KEYS}
    return {}


def is_admin(user) -> bool:
    return _coerce_role(getattr(user, "role", None)) in ADMIN_ROLES


def is_super_admin(user) -> bool:
    return _coerce_role(getattr(user, "role", None)) == Role.SUPER_ADMIN


def has_permission(user, key: str, action: str = "view") -> bool:
    if action not in ACTIONS:
        raise ValueError(f"Unknown permission action: {action}")
    flags = resolve_permissions(user).get(key)
    if not flags:
        return False
    return bool(flags.get(action))


def has_any_permission(user, checks: Iterable[tuple[str, str]]) -> bool:
    permissions = resolve_permissions(user)
    return any(permissions.get(key, {}).get(action, False) for key, action in checks)


def require_permission(user, key: str, action: str = "view", *, allow_admin: bool = True) -> None:
    if allow_admin and is_admin(user):
        return
    if not has_permission(user, key, action):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permission: {key} ({action})",
        )


def require_admin(user) -> None:
    if not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")


def require_super_admin(user) -> None:
    if not is_super_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required")


def can_see_dashboard_section(user, section: str) -> bool:
    if is_admin(user):
        return True
    custom_role = getattr(user, "custom_role", None)
    if _coerce_role(getattr(user, "role", None)) == Role.CUSTOM and custom_role is not None:
        for row in custom_role.dashboard_visibility:
            if row.section == section:
                return bool(row.visible)
    return has_permission(user, f"dashboard.{section}", "view")


def dashboard_visibility(user) -> Dict[str, bool]:
    return {section: can_see_dashboard_section(user, section) for section in DASHBOARD_SECTIONS}
