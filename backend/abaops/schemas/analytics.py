from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional

from abaops.schemas.base import ORMModel


class AnalyticsSummary(ORMModel):
    total_timesheets: int
    approved_timesheets: int
    rejected_timesheets: int
    total_invoices: int
    total_billed: Decimal
    total_paid: Decimal
    total_outstanding: Decimal


class RevenuePoint(ORMModel):
    month: str
    label: str
    billed: Decimal
    paid: Decimal


class TimesheetTrendPoint(ORMModel):
    month: str
    label: str
    created: int
    approved: int
    rejected: int


class ProviderProductivity(ORMModel):
    provider_id: int
    name: str
    units: Decimal
    hours: Decimal
    timesheet_count: int


class ClientBilling(ORMModel):
    client_id: int
    name: str
    total_billed: Decimal
    total_paid: Decimal
    outstanding: Decimal
    invoice_count: int


class StatusCount(ORMModel):
    status: str
    label: str
    count: int


class WaterfallStep(ORMModel):
    label: str
    value: Decimal


class InsuranceComparison(ORMModel):
    insurance_id: Optional[int] = None
    name: str
    total_billed: Decimal
    total_paid: Decimal
    entry_count: int


class AnalyticsReport(ORMModel):
    start_date: date
    end_date: date
    summary: AnalyticsSummary
    revenue_trends: List[RevenuePoint]
    timesheet_trends: List[TimesheetTrendPoint]
    provider_productivity: List[ProviderProductivity]
    client_billing: List[ClientBilling]
    invoice_status_distribution: List[StatusCount]
    financial_waterfall: List[WaterfallStep]
    insurance_comparisons: List[InsuranceComparison]
    timesheet_status_breakdown: List[StatusCount]
