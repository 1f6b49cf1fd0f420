"""
Billing Date Calculator — pickup cadence and charge timing.

Rules:
  - Cadence: WEEKLY = 7 days, BIWEEKLY = 14, TRIWEEKLY = 21
  - Next pickup = current pickup + interval, rolled forward to the preferred weekday
  - Billing instant = pickup date at slot start (business zone) minus lead hours
  - Lead hours are clamped to [MIN_BILLING_LEAD_HOURS, MAX_BILLING_LEAD_HOURS]
  - First pickup from today is strictly in the future and respects the cadence
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from config import settings
from domain.entities import Frequency, Schedule
from domain.errors import ValidationError
from services.clock import add_days, day_of_week, subtract_hours, with_time_of_day

NOON_MINUTES = 12 * 60

_SLOT_START_12H = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*(AM|PM)", re.IGNORECASE)
_SLOT_START_24H = re.compile(r"^\s*(\d{1,2}):(\d{2})(?!\s*[AP]M)", re.IGNORECASE)


@dataclass(frozen=True)
class BillingPolicy:
    """Tunables the engine reads; defaults come from settings."""
    default_lead_hours: int = 84
    min_lead_hours: int = 1
    max_lead_hours: int = 168
    max_failures: int = 3
    pending_timeout_hours: int = 24
    audit_retention_days: int = 30

    @classmethod
    def from_settings(cls) -> "BillingPolicy":
        return cls(
            default_lead_hours=settings.DEFAULT_BILLING_LEAD_HOURS,
            min_lead_hours=settings.MIN_BILLING_LEAD_HOURS,
            max_lead_hours=settings.MAX_BILLING_LEAD_HOURS,
            max_failures=settings.MAX_BILLING_FAILURES,
            pending_timeout_hours=settings.BILLING_PENDING_TIMEOUT_HOURS,
            audit_retention_days=settings.AUDIT_RETENTION_DAYS,
        )


DEFAULT_POLICY = BillingPolicy()


def clamp_lead_hours(hours: int, policy: BillingPolicy = DEFAULT_POLICY) -> int:
    return max(policy.min_lead_hours, min(policy.max_lead_hours, hours))


def validate_lead_hours(hours: int, policy: BillingPolicy = DEFAULT_POLICY) -> int:
    if not policy.min_lead_hours <= hours <= policy.max_lead_hours:
        raise ValidationError(
            f"Billing lead hours must be between {policy.min_lead_hours} "
            f"and {policy.max_lead_hours}, got {hours}"
        )
    return hours


def validate_weekday(dow: int) -> int:
    if not isinstance(dow, int) or not 0 <= dow <= 6:
        raise ValidationError(f"Day of week must be 0-6, got {dow!r}")
    return dow


def parse_time_slot_start(label: str) -> int:
    """
    Minutes after midnight at which a slot label starts.

    "9:00 AM - 11:00 AM" → 540, "12:00 PM - 2:00 PM" → 720, "14:30" → 870.
    Labels that cannot be parsed start at noon.
    """
    if not label:
        return NOON_MINUTES

    match = _SLOT_START_12H.match(label)
    if match:
        hour, minute, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
        if hour > 12 or minute > 59:
            return NOON_MINUTES
        if period == "PM" and hour != 12:
            hour += 12
        elif period == "AM" and hour == 12:
            hour = 0
        return hour * 60 + minute

    match = _SLOT_START_24H.match(label)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour < 24 and minute < 60:
            return hour * 60 + minute

    return NOON_MINUTES


def next_pickup_date(current: date, preferred_day: int, frequency: Frequency) -> date:
    """Advance one cycle from `current`, then roll forward to the preferred weekday."""
    candidate = add_days(current, frequency.interval_days)
    shift = (preferred_day - day_of_week(candidate)) % 7
    return add_days(candidate, shift)


def next_pickup_date_from_today(today: date, preferred_day: int, frequency: Frequency) -> date:
    """First pickup after today on the preferred weekday, padded so multi-week plans start a cycle out."""
    days_until = preferred_day - day_of_week(today)
    if days_until <= 0:
        days_until += 7

    # days_until is 1..7, always short of a multi-week cycle; pad by the weeks beyond the first
    days_until += frequency.interval_days - 7

    return add_days(today, days_until)


def billing_date(
    pickup_date: date,
    slot_start_minutes: int,
    lead_hours: int,
    tz: ZoneInfo,
    policy: BillingPolicy = DEFAULT_POLICY,
) -> datetime:
    """The instant `lead_hours` (clamped) before the pickup slot starts."""
    hours = clamp_lead_hours(lead_hours, policy)
    pickup_at = with_time_of_day(pickup_date, slot_start_minutes // 60, slot_start_minutes % 60, tz)
    return subtract_hours(pickup_at, hours)


def schedule_for(
    pickup_date: date,
    slot_start_minutes: int,
    lead_hours: int,
    tz: ZoneInfo,
    policy: BillingPolicy = DEFAULT_POLICY,
) -> Schedule:
    return Schedule(
        next_pickup_date=pickup_date,
        next_billing_date=billing_date(pickup_date, slot_start_minutes, lead_hours, tz, policy),
    )
