from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from abaops.core.settings import settings
from abaops.db.base import ensure_aware


WEEKLY_INVOICE_SCHEDULE = "0 7 * * 2"
RUN_WEEKDAY = 1  # Tuesday, datetime.weekday()
RUN_HOUR = 7


@dataclass(frozen=True)
class BillingPeriod:
    start: datetime
    end: datetime
    label: str

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def end_date(self) -> date:
        return self.end.date()


def _zone(tz_name: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(tz_name or settings.billing_timezone)


def _format_day(value: date) -> str:
    return f"{value.strftime('%a')} {value.month}/{value.day}/{value.year}"


def format_period_label(start: date, end: date) -> str:
    return f"{_format_day(start)} - {_format_day(end)}"


def get_billing_period(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> BillingPeriod:
    """Monday-to-Monday week that the Tuesday job bills for.

    Returned datetimes are in the billing timezone.
    """
    zone = _zone(tz_name)
    local_now = (ensure_aware(now) or datetime.now(timezone.utc)).astimezone(zone)
    today = local_now.date()

    if today.weekday() == RUN_WEEKDAY and local_now.hour >= RUN_HOUR:
        end_day = today - timedelta(days=1)
    else:
        end_day = today - timedelta(days=today.weekday())
    start_day = end_day - timedelta(days=7)

    start = datetime.combine(start_day, time.min, tzinfo=zone)
    end = datetime.combine(end_day, time.max, tzinfo=zone)
    return BillingPeriod(start=start, end=end, label=format_period_label(start_day, end_day))


def get_next_run_time(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> datetime:
    """Next Tuesday 07:00 local strictly after ``now``, as UTC."""
    zone = _zone(tz_name)
    local_now = (ensure_aware(now) or datetime.now(timezone.utc)).astimezone(zone)
    days_ahead = (RUN_WEEKDAY - local_now.weekday()) % 7
    candidate = datetime.combine(local_now.date() + timedelta(days=days_ahead), time(RUN_HOUR), tzinfo=zone)
    if candidate <= local_now:
        candidate = datetime.combine(candidate.date() + timedelta(days=7), time(RUN_HOUR), tzinfo=zone)
    return candidate.astimezone(timezone.utc)


def billing_local_to_utc(value: Optional[datetime], tz_name: Optional[str] = None) -> Optional[datetime]:
    """Naive values are wall-clock times in the billing timezone."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=_zone(tz_name))
    return value.astimezone(timezone.utc)


def get_next_minute(now: Optional[datetime] = None) -> datetime:
    current = ensure_aware(now) or datetime.now(timezone.utc)
    return current.replace(second=0, microsecond=0) + timedelta(minutes=1)


def is_due(job, now: Optional[datetime] = None) -> bool:
    if not job.active:
        return False
    next_run = ensure_aware(job.next_run)
    if next_run is None:
        return True
    return next_run <= (ensure_aware(now) or datetime.now(timezone.utc))
