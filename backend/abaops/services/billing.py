"""Unit and amount arithmetic shared by manual and scheduled invoicing.

One hour of service is four billable units. ``SV`` (supervision) entries are
counted in the unit totals but never charged on regular timesheets; BCBA
timesheets charge every entry.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from abaops.models.enums import EntryType, InvoiceStatus


TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def _q(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def minutes_to_units(minutes: Optional[int]) -> Decimal:
    if not minutes or minutes <= 0:
        return ZERO
    return _q(Decimal(minutes) / Decimal(60) * Decimal(4))


def is_billable(notes: Optional[str], *, is_regular: bool = True) -> bool:
    return not (is_regular and notes == EntryType.SV.value)


@dataclass(frozen=True)
class EntryTotals:
    units: Decimal
    billable_units: Decimal
    amount: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    total_minutes: int
    total_units: Decimal
    billable_units: Decimal
    amount: Decimal


def calculate_entry_totals(
    minutes: Optional[int],
    notes: Optional[str],
    rate: Number,
    is_regular: bool = True,
) -> EntryTotals:
    units = minutes_to_units(minutes)
    if not is_billable(notes, is_regular=is_regular):
        return EntryTotals(units=units, billable_units=ZERO, amount=ZERO)
    return EntryTotals(units=units, billable_units=units, amount=_q(units * _decimal(rate)))


def calculate_invoice_totals(entries: Iterable, rate: Number, is_regular: bool = True) -> InvoiceTotals:
    """Totals over ``entries`` (objects or dicts carrying ``minutes`` and ``notes``)."""
    total_minutes = 0
    total_units = ZERO
    billable_units = ZERO
    amount = ZERO
    for entry in entries:
        if isinstance(entry, dict):
            minutes, notes = entry.get("minutes") or 0, entry.get("notes")
        else:
            minutes, notes = entry.minutes or 0, entry.notes
        line = calculate_entry_totals(minutes, notes, rate, is_regular)
        total_minutes += minutes
        total_units += line.units
        billable_units += line.billable_units
        amount += line.amount
    return InvoiceTotals(
        total_minutes=total_minutes,
        total_units=_q(total_units),
        billable_units=_q(billable_units),
        amount=_q(amount),
    )


def rate_for_timesheet(timesheet) -> Decimal:
    """Per-unit rate for ``timesheet``; raises ValueError if none is usable."""
    candidates: list[Optional[Decimal]] = []
    client_insurance = timesheet.client.insurance if timesheet.client else None
    if timesheet.is_bcba:
        if timesheet.bcba_insurance is not None:
            candidates.append(timesheet.bcba_insurance.rate_per_unit)
        insurance = timesheet.insurance or client_insurance
        if insurance is not None:
            candidates.extend([insurance.bcba_rate_per_unit, insurance.rate_per_unit])
    else:
        insurance = client_insurance or timesheet.insurance
        if insurance is not None:
            candidates.extend([insurance.regular_rate_per_unit, insurance.rate_per_unit])

    for candidate in candidates:
        if candidate is None:
            continue
        rate = _decimal(candidate)
        if rate < 0:
            raise ValueError(f"Invalid negative rate {rate} for timesheet {timesheet.id}")
        return rate
    raise ValueError(f"No insurance rate configured for timesheet {timesheet.id}")


def compute_outstanding(total: Number, adjustments: Number, paid: Number) -> Decimal:
    return _q(_decimal(total) + _decimal(adjustments) - _decimal(paid))


def status_after_payment(outstanding: Number, paid: Number, current: InvoiceStatus) -> InvoiceStatus:
    if _decimal(outstanding) <= 0:
        return InvoiceStatus.PAID
    if _decimal(paid) > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return current
