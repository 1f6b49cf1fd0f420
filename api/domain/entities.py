"""
Domain entities — subscriptions, billing attempts and pickups.

Subscription lifecycle state is a tagged value:
  - Active    always carries a schedule (next pickup date + next billing instant)
  - Paused    keeps the schedule it had when paused, if any; it is not live
  - Cancelled carries no schedule at all
so an ACTIVE subscription without dates cannot be constructed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Union


# ── Enums ──────────────────────────────────────────────────

class Frequency(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    TRIWEEKLY = "TRIWEEKLY"

    @property
    def interval_days(self) -> int:
        return _FREQUENCY_DAYS[self]

    @property
    def discount_percent(self) -> float:
        return _FREQUENCY_DISCOUNTS[self]


_FREQUENCY_DAYS = {
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
    Frequency.TRIWEEKLY: 21,
}

_FREQUENCY_DISCOUNTS = {
    Frequency.WEEKLY: 10.0,
    Frequency.BIWEEKLY: 5.0,
    Frequency.TRIWEEKLY: 2.5,
}


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class BillingStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PickupStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    READY = "READY"
    PICKED_UP = "PICKED_UP"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# ── Subscription state ─────────────────────────────────────

@dataclass(frozen=True)
class Schedule:
    next_pickup_date: date
    next_billing_date: datetime


@dataclass(frozen=True)
class Active:
    schedule: Schedule

    status = SubscriptionStatus.ACTIVE


@dataclass(frozen=True)
class Paused:
    reason: str
    paused_until: date | None = None
    schedule: Schedule | None = None

    status = SubscriptionStatus.PAUSED


@dataclass(frozen=True)
class Cancelled:
    cancelled_at: datetime | None = None

    status = SubscriptionStatus.CANCELLED


SubscriptionState = Union[Active, Paused, Cancelled]


@dataclass(frozen=True)
class OneTimeOverride:
    """A single-occurrence change of pickup date/slot. Present or absent as a whole."""
    pickup_date: date
    time_slot: str
    reason: str | None
    rescheduled_by: str | None
    rescheduled_at: datetime


@dataclass(frozen=True)
class CustomerSnapshot:
    customer_id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None


@dataclass
class SubscriptionRecord:
    shop: str
    external_contract_id: str
    customer: CustomerSnapshot
    frequency: Frequency
    preferred_day: int
    preferred_time_slot: str
    preferred_time_slot_start_minutes: int
    state: SubscriptionState
    billing_lead_hours: int = 84
    billing_cycle_count: int = 0
    billing_failure_count: int = 0
    billing_failure_reason: str | None = None
    last_billing_status: BillingStatus | None = None
    last_billing_attempt_at: datetime | None = None
    last_billing_attempt_id: str | None = None
    one_time_override: OneTimeOverride | None = None
    admin_notes: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime | None = None

    @property
    def status(self) -> SubscriptionStatus:
        return self.state.status

    @property
    def discount_percent(self) -> float:
        return self.frequency.discount_percent

    @property
    def schedule(self) -> Schedule | None:
        return getattr(self.state, "schedule", None)

    @property
    def next_pickup_date(self) -> date | None:
        return self.schedule.next_pickup_date if self.schedule else None

    @property
    def next_billing_date(self) -> datetime | None:
        return self.schedule.next_billing_date if self.schedule else None

    @property
    def pause_reason(self) -> str | None:
        return self.state.reason if isinstance(self.state, Paused) else None

    @property
    def paused_until(self) -> date | None:
        return self.state.paused_until if isinstance(self.state, Paused) else None

    @property
    def effective_time_slot(self) -> str:
        """Slot of the next occurrence: the override slot when one is pending."""
        if self.one_time_override is not None:
            return self.one_time_override.time_slot
        return self.preferred_time_slot


# ── Billing attempts ───────────────────────────────────────

@dataclass
class BillingAttempt:
    shop: str
    subscription_id: str
    billing_cycle: int
    idempotency_key: str
    status: BillingStatus = BillingStatus.PENDING
    external_attempt_id: str | None = None
    external_order_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    attempted_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_terminal(self) -> bool:
        return self.status in (BillingStatus.SUCCESS, BillingStatus.FAILED)


# ── Pickups ────────────────────────────────────────────────

@dataclass
class Pickup:
    shop: str
    external_order_id: str
    order_number: str
    customer: CustomerSnapshot
    pickup_date: date
    pickup_time_slot: str
    status: PickupStatus = PickupStatus.SCHEDULED
    subscription_id: str | None = None
    notes: str | None = None
    calendar_event_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
