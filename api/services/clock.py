"""
Business clock — "now" and calendar arithmetic in the shop's timezone.

Rules:
  - Dates are calendar dates in the business zone, never UTC dates
  - Weekdays are numbered 0 = Sunday … 6 = Saturday
  - Wall-clock instants use the UTC offset in force on the target date
  - Hour arithmetic is absolute, so "84 hours before" is 84 real hours across DST
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from config import settings

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def business_timezone() -> ZoneInfo:
    return ZoneInfo(settings.SHOP_TIMEZONE)


class BusinessClock:
    """Source of the current instant, injectable for tests."""

    def __init__(self, tz: ZoneInfo | None = None, now_fn: Callable[[], datetime] | None = None):
        self.tz = tz or business_timezone()
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    @classmethod
    def frozen(cls, instant: datetime, tz: ZoneInfo | None = None) -> "BusinessClock":
        """A clock stuck at `instant` (naive instants are read as business-zone wall time)."""
        zone = tz or business_timezone()
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=zone)
        return cls(tz=zone, now_fn=lambda: instant)

    def now(self) -> datetime:
        return self._now_fn().astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()


def day_of_week(d: date) -> int:
    """0 = Sunday … 6 = Saturday."""
    return (d.weekday() + 1) % 7


def day_name(dow: int) -> str:
    return DAY_NAMES[dow]


def add_days(d: date, n: int) -> date:
    return d + timedelta(days=n)


def with_time_of_day(d: date, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    """The instant at hour:minute wall time on `d` in `tz`.

    A wall time skipped by a DST jump resolves to the equivalent instant after the jump.
    """
    local = datetime.combine(d, time(hour, minute), tzinfo=tz)
    return local.astimezone(timezone.utc).astimezone(tz)


def subtract_hours(instant: datetime, hours: int) -> datetime:
    return (instant.astimezone(timezone.utc) - timedelta(hours=hours)).astimezone(instant.tzinfo)


def elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Real time between two instants; same-zone subtraction in Python measures wall time."""
    return later.astimezone(timezone.utc) - earlier.astimezone(timezone.utc)


def format_date_iso(d: date) -> str:
    return d.isoformat()
