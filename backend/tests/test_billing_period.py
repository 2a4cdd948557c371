from __future__ import annotations

from datetime import date, datetime, timezone
from types import SimpleNamespace

from abaops.services.billing_period import get_billing_period, get_next_minute, get_next_run_time, is_due

TZ = "America/New_York"


def test_tuesday_after_seven_bills_the_week_ending_yesterday():
    # 2026-01-13 is a Tuesday; 13:00 UTC is 08:00 in New York.
    period = get_billing_period(datetime(2026, 1, 13, 13, 0, tzinfo=timezone.utc), TZ)
    assert period.start_date == date(2026, 1, 5)
    assert period.end_date == date(2026, 1, 12)
    assert period.label == "Mon 1/5/2026 - Mon 1/12/2026"


def test_tuesday_before_seven_uses_monday_of_current_week():
    period = get_billing_period(datetime(2026, 1, 13, 11, 0, tzinfo=timezone.utc), TZ)
    assert period.end_date == date(2026, 1, 12)
    assert period.start_date == date(2026, 1, 5)


def test_midweek_period_ends_on_this_weeks_monday():
    period = get_billing_period(datetime(2026, 1, 15, 17, 0, tzinfo=timezone.utc), TZ)
    assert period.start_date == date(2026, 1, 5)
    assert period.end_date == date(2026, 1, 12)


def test_monday_counts_as_the_period_end():
    # 2026-01-12 is a Monday.
    period = get_billing_period(datetime(2026, 1, 12, 15, 0, tzinfo=timezone.utc), TZ)
    assert period.start_date == date(2026, 1, 5)
    assert period.end_date == date(2026, 1, 12)

    # 03:00 UTC Tuesday is still Monday evening in New York.
    period = get_billing_period(datetime(2026, 1, 13, 3, 0, tzinfo=timezone.utc), TZ)
    assert period.end_date == date(2026, 1, 12)


def test_sunday_bills_the_week_ending_last_monday():
    period = get_billing_period(datetime(2026, 1, 11, 18, 0, tzinfo=timezone.utc), TZ)
    assert period.start_date == date(2025, 12, 29)
    assert period.end_date == date(2026, 1, 5)
    assert period.label == "Mon 12/29/2025 - Mon 1/5/2026"


def test_next_run_is_following_tuesday_seven_local():
    next_run = get_next_run_time(datetime(2026, 1, 14, 12, 0, tzinfo=timezone.utc), TZ)
    assert next_run == datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)


def test_next_run_skips_a_week_once_the_hour_has_passed():
    next_run = get_next_run_time(datetime(2026, 1, 13, 12, 0, tzinfo=timezone.utc), TZ)
    assert next_run == datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)


def test_next_minute_truncates_seconds():
    assert get_next_minute(datetime(2026, 1, 13, 12, 0, 42, tzinfo=timezone.utc)) == datetime(
        2026, 1, 13, 12, 1, tzinfo=timezone.utc
    )


def test_is_due():
    now = datetime(2026, 1, 13, 12, 0, tzinfo=timezone.utc)
    assert is_due(SimpleNamespace(active=True, next_run=None), now)
    assert is_due(SimpleNamespace(active=True, next_run=datetime(2026, 1, 13, 11, 59, tzinfo=timezone.utc)), now)
    assert not is_due(SimpleNamespace(active=True, next_run=datetime(2026, 1, 13, 12, 1, tzinfo=timezone.utc)), now)
    assert not is_due(SimpleNamespace(active=False, next_run=None), now)
