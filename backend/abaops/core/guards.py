from __future__ import annotations

import logging

from fastapi import HTTPException, status

from abaops.core.settings import settings


logger = logging.getLogger("security")


def _describe(action: str) -> str:
    return action.replace("_", " ")


def require_destructive_allowed(action: str) -> None:
    """Refuse deletes of billing records where the deployment has not opted in."""
    if settings.destructive_actions_enabled:
        return
    logger.warning("Blocked %s in %s", action, settings.environment)
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "ok": False,
            "code": "DESTRUCTIVE_ACTION_DISABLED",
            "action": action,
            "message": (
                f"Cannot {_describe(action)} in the {settings.environment} environment. "
                "Set ALLOW_DESTRUCTIVE_ACTIONS=true to permit deletes."
            ),
        },
    )
