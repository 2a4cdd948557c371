"""Timesheet and invoice module router aggregation."""
from abaops.routers import email_queue, invoices, jobs, public, timesheets

ROUTERS = [timesheets.router, invoices.router, email_queue.router, public.router, jobs.router]
