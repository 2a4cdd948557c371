"""Notifications module router aggregation."""
from abaops.routers import notifications

ROUTERS = [notifications.router]
