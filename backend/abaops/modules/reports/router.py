"""Reports and dashboard module router aggregation."""
from abaops.routers import analytics, dashboard, reports, search

ROUTERS = [dashboard.router, reports.router, analytics.router, search.router]
