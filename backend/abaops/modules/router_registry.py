"""Central router registry for module-oriented composition."""
from __future__ import annotations

from fastapi import FastAPI

from abaops.modules.auth_users.router import ROUTERS as AUTH_USERS_ROUTERS
from abaops.modules.billing.router import ROUTERS as BILLING_ROUTERS
from abaops.modules.community.router import ROUTERS as COMMUNITY_ROUTERS
from abaops.modules.masterdata.router import ROUTERS as MASTERDATA_ROUTERS
from abaops.modules.notifications.router import ROUTERS as NOTIFICATION_ROUTERS
from abaops.modules.payroll.router import ROUTERS as PAYROLL_ROUTERS
from abaops.modules.reports.router import ROUTERS as REPORT_ROUTERS

ALL_ROUTERS = (
    AUTH_USERS_ROUTERS
    + MASTERDATA_ROUTERS
    + BILLING_ROUTERS
    + COMMUNITY_ROUTERS
    + PAYROLL_ROUTERS
    + NOTIFICATION_ROUTERS
    + REPORT_ROUTERS
)


def include_all_routers(app: FastAPI) -> None:
    for router in ALL_ROUTERS:
        app.include_router(router)
