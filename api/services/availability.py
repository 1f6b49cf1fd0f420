"""
Availability Calculator — bookable pickup dates and slots.

Rules:
  - Only enabled weekdays are bookable
  - Lead time: `lead_before` days when booked before the daily cutoff, else `lead_after`
  - Per-weekday lead overrides apply when `custom_by_day` is on
  - Full-day blackouts remove the date; windowed blackouts remove overlapping slots only
  - A date with no surviving slot is not bookable
  - Recurring blackouts match by weekday, ranged ones inclusively, single ones exactly
  - Scan at most `max_booking_days + 14` days and stop after `max_booking_days` hits
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time

from services.clock import add_days, day_of_week

DEFAULT_ENABLED_DAYS = frozenset({2, 3, 5, 6})  # Tue, Wed, Fri, Sat
SCAN_PADDING_DAYS = 14


@dataclass(frozen=True)
class LeadTimeRule:
    enabled: bool = True
    cutoff_time: time = time(12, 0)
    lead_before: int = 3
    lead_after: int = 4
    max_booking_days: int = 14
    custom_by_day: bool = False
    # {weekday: (before, after)}; None falls back to the global value
    day_overrides: dict[int, tuple[int | None, int | None]] = field(default_factory=dict)


@dataclass(frozen=True)
class SlotDefinition:
    label: str
    start: time
    end: time
    day_of_week: int | None = None
    is_active: bool = True
    sort_order: int = 0
    id: str | None = None


@dataclass(frozen=True)
class Blackout:
    date: date | None = None
    date_end: date | None = None
    day_of_week: int | None = None
    is_recurring: bool = False
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None
    is_active: bool = True

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None or self.end_time is None


@dataclass(frozen=True)
class AvailabilityConfig:
    enabled_days: frozenset[int] = DEFAULT_ENABLED_DAYS
    lead: LeadTimeRule = field(default_factory=LeadTimeRule)
    slots: tuple[SlotDefinition, ...] = ()
    blackouts: tuple[Blackout, ...] = ()


@dataclass
class AvailableDate:
    date: date
    day_of_week: int
    slots: list[SlotDefinition]


# ── Slot labels ────────────────────────────────────────────

def format_time_12h(t: time) -> str:
    """time(9, 0) → "9:00 AM", time(13, 30) → "1:30 PM"."""
    period = "PM" if t.hour >= 12 else "AM"
    hour = t.hour % 12 or 12
    return f"{hour}:{t.minute:02d} {period}"


def generate_slot_label(start: time, end: time) -> str:
    return f"{format_time_12h(start)} - {format_time_12h(end)}"


# ── Lead time ──────────────────────────────────────────────

def effective_lead_days(rule: LeadTimeRule, dow: int, now: datetime) -> int:
    """Minimum days ahead a booking for weekday `dow` must be, given the time of booking."""
    if not rule.enabled:
        return 0

    before_cutoff = now.time() < rule.cutoff_time
    lead = rule.lead_before if before_cutoff else rule.lead_after

    if rule.custom_by_day:
        before, after = rule.day_overrides.get(dow, (None, None))
        override = before if before_cutoff else after
        if override is not None:
            lead = override

    return lead


# ── Blackouts ──────────────────────────────────────────────

def time_windows_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open [start, end) overlap."""
    return start_a < end_b and end_a > start_b


def blackout_applies_to_date(blackout: Blackout, d: date) -> bool:
    if not blackout.is_active:
        return False
    if blackout.is_recurring:
        return blackout.day_of_week is not None and blackout.day_of_week == day_of_week(d)
    if blackout.date is None:
        return False
    if blackout.date_end is not None:
        return blackout.date <= d <= blackout.date_end
    return blackout.date == d


def is_day_blacked_out(blackouts: tuple[Blackout, ...] | list[Blackout], d: date) -> bool:
    """True when a full-day blackout covers `d`. Windowed blackouts never block the whole day."""
    return any(b.is_full_day and blackout_applies_to_date(b, d) for b in blackouts)


def is_slot_blacked_out(
    blackouts: tuple[Blackout, ...] | list[Blackout], d: date, slot: SlotDefinition,
) -> bool:
    for b in blackouts:
        if not blackout_applies_to_date(b, d):
            continue
        if b.is_full_day:
            return True
        if time_windows_overlap(slot.start, slot.end, b.start_time, b.end_time):
            return True
    return False


# ── Slots ──────────────────────────────────────────────────

def slots_for_day(config: AvailabilityConfig, dow: int) -> list[SlotDefinition]:
    """Active slots usable on weekday `dow`, in display order."""
    slots = [
        s for s in config.slots
        if s.is_active and (s.day_of_week is None or s.day_of_week == dow)
    ]
    return sorted(slots, key=lambda s: (s.sort_order, s.start))


def _open_slots(config: AvailabilityConfig, d: date) -> list[SlotDefinition]:
    return [
        s for s in slots_for_day(config, day_of_week(d))
        if not is_slot_blacked_out(config.blackouts, d, s)
    ]


# ── Queries ────────────────────────────────────────────────

def get_available_dates(config: AvailabilityConfig, now: datetime) -> list[AvailableDate]:
    """
    Bookable dates from `now` (business-zone instant), nearest first.

    A date is bookable when its weekday is enabled, it clears the lead time,
    it is not fully blacked out, and at least one active slot survives the
    windowed blackouts. A shop with no slots has no bookable dates.
    """
    today = now.date()
    max_days = config.lead.max_booking_days
    results: list[AvailableDate] = []

    for days_ahead in range(max_days + SCAN_PADDING_DAYS + 1):
        if len(results) >= max_days:
            break

        candidate = add_days(today, days_ahead)
        dow = day_of_week(candidate)

        if dow not in config.enabled_days:
            continue
        if days_ahead < effective_lead_days(config.lead, dow, now):
            continue
        if is_day_blacked_out(config.blackouts, candidate):
            continue

        slots = _open_slots(config, candidate)
        if not slots:
            continue

        results.append(AvailableDate(date=candidate, day_of_week=dow, slots=slots))

    return results


def is_bookable(
    config: AvailabilityConfig,
    now: datetime,
    candidate: date,
    slot_label: str | None = None,
) -> bool:
    """Whether `candidate` (and optionally a specific slot on it) can be booked at `now`."""
    for available in get_available_dates(config, now):
        if available.date != candidate:
            continue
        if slot_label is None:
            return True
        return any(s.label == slot_label for s in available.slots)
    return False
