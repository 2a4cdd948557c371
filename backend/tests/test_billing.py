from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest

from abaops.models.enums import InvoiceStatus
from abaops.services.billing import (
    calculate_entry_totals,
    calculate_invoice_totals,
    compute_outstanding,
    minutes_to_units,
    rate_for_timesheet,
    status_after_payment,
)


def _timesheet(*, is_bcba=False, insurance=None, bcba_insurance=None, client_insurance=None):
    return SimpleNamespace(
        id=1,
        is_bcba=is_bcba,
        insurance=insurance,
        bcba_insurance=bcba_insurance,
        client=SimpleNamespace(insurance=client_insurance),
    )


def test_minutes_to_units_uses_four_units_per_hour():
    assert minutes_to_units(90) == Decimal("6.00")
    assert minutes_to_units(15) == Decimal("1.00")
    assert minutes_to_units(10) == Decimal("0.67")
    assert minutes_to_units(0) == Decimal("0.00")
    assert minutes_to_units(None) == Decimal("0.00")


def test_supervision_is_free_on_regular_timesheets_only():
    regular = calculate_entry_totals(60, "SV", Decimal("10.00"), is_regular=True)
    assert regular.units == Decimal("4.00")
    assert regular.billable_units == Decimal("0.00")
    assert regular.amount == Decimal("0.00")

    bcba = calculate_entry_totals(60, "SV", Decimal("10.00"), is_regular=False)
    assert bcba.billable_units == Decimal("4.00")
    assert bcba.amount == Decimal("40.00")


def test_invoice_totals_accept_dict_entries():
    totals = calculate_invoice_totals(
        [
            {"minutes": 90, "notes": "DR"},
            {"minutes": 30, "notes": "SV"},
            {"minutes": 45, "notes": None},
        ],
        "12.00",
    )
    assert totals.total_minutes == 165
    assert totals.total_units == Decimal("11.00")
    assert totals.billable_units == Decimal("9.00")
    assert totals.amount == Decimal("108.00")


def test_rate_prefers_regular_rate_for_regular_timesheets():
    insurance = SimpleNamespace(rate_per_unit=Decimal("12.00"), regular_rate_per_unit=Decimal("15.00"), bcba_rate_per_unit=None)
    assert rate_for_timesheet(_timesheet(client_insurance=insurance)) == Decimal("15.00")

    insurance.regular_rate_per_unit = None
    assert rate_for_timesheet(_timesheet(client_insurance=insurance)) == Decimal("12.00")


def test_rate_for_bcba_timesheets_falls_back_in_order():
    insurance = SimpleNamespace(rate_per_unit=Decimal("12.00"), regular_rate_per_unit=None, bcba_rate_per_unit=Decimal("20.00"))
    bcba_insurance = SimpleNamespace(rate_per_unit=Decimal("25.00"))

    assert rate_for_timesheet(_timesheet(is_bcba=True, insurance=insurance, bcba_insurance=bcba_insurance)) == Decimal("25.00")
    assert rate_for_timesheet(_timesheet(is_bcba=True, insurance=insurance)) == Decimal("20.00")
    insurance.bcba_rate_per_unit = None
    assert rate_for_timesheet(_timesheet(is_bcba=True, client_insurance=insurance)) == Decimal("12.00")


def test_rate_without_insurance_raises():
    with pytest.raises(ValueError):
        rate_for_timesheet(_timesheet())


def test_outstanding_and_payment_status():
    outstanding = compute_outstanding(Decimal("100.00"), Decimal("-10.00"), Decimal("30.00"))
    assert outstanding == Decimal("60.00")
    assert status_after_payment(outstanding, Decimal("30.00"), InvoiceStatus.SENT) == InvoiceStatus.PARTIALLY_PAID
    assert status_after_payment(Decimal("0.00"), Decimal("90.00"), InvoiceStatus.PARTIALLY_PAID) == InvoiceStatus.PAID
    assert status_after_payment(Decimal("50.00"), Decimal("0.00"), InvoiceStatus.SENT) == InvoiceStatus.SENT
