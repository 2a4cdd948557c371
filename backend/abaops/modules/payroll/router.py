"""Payroll module router aggregation."""
from abaops.routers import payroll

ROUTERS = [payroll.router]
