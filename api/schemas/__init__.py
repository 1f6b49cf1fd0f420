"""Pydantic schemas for API request/response models."""

from __future__ import annotations
from datetime import date, datetime
from enum import Enum
from pydantic import BaseModel, Field

from domain.entities import BillingAttempt, Pickup, SubscriptionRecord
from services.clock import day_name


# ── Enums ──────────────────────────────────────────────────

class Frequency(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    TRIWEEKLY = "TRIWEEKLY"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


# ── Subscriptions ──────────────────────────────────────────

class SubscriptionCreate(BaseModel):
    contract_id: str
    customer_id: str
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    frequency: Frequency = Frequency.WEEKLY
    preferred_day: int
    preferred_time_slot: str
    billing_lead_hours: int | None = None


class OneTimeOverrideResponse(BaseModel):
    pickup_date: date
    time_slot: str
    reason: str | None = None
    rescheduled_by: str | None = None
    rescheduled_at: datetime


class SubscriptionResponse(BaseModel):
    id: str
    shop: str
    external_contract_id: str
    customer_id: str
    customer_name: str | None = None
    customer_email: str | None = None
    frequency: str
    discount_percent: float
    preferred_day: int
    preferred_day_name: str
    preferred_time_slot: str
    status: str
    pause_reason: str | None = None
    paused_until: date | None = None
    next_pickup_date: date | None = None
    next_billing_date: datetime | None = None
    billing_lead_hours: int
    billing_cycle_count: int
    billing_failure_count: int
    billing_failure_reason: str | None = None
    last_billing_status: str | None = None
    last_billing_attempt_at: datetime | None = None
    one_time_override: OneTimeOverrideResponse | None = None
    admin_notes: str | None = None

    @classmethod
    def from_record(cls, sub: SubscriptionRecord) -> "SubscriptionResponse":
        override = sub.one_time_override
        return cls(
            id=sub.id,
            shop=sub.shop,
            external_contract_id=sub.external_contract_id,
            customer_id=sub.customer.customer_id,
            customer_name=sub.customer.name,
            customer_email=sub.customer.email,
            frequency=sub.frequency.value,
            discount_percent=sub.discount_percent,
            preferred_day=sub.preferred_day,
            preferred_day_name=day_name(sub.preferred_day),
            preferred_time_slot=sub.preferred_time_slot,
            status=sub.status.value,
            pause_reason=sub.pause_reason,
            paused_until=sub.paused_until,
            next_pickup_date=sub.next_pickup_date,
            next_billing_date=sub.next_billing_date,
            billing_lead_hours=sub.billing_lead_hours,
            billing_cycle_count=sub.billing_cycle_count,
            billing_failure_count=sub.billing_failure_count,
            billing_failure_reason=sub.billing_failure_reason,
            last_billing_status=sub.last_billing_status.value if sub.last_billing_status else None,
            last_billing_attempt_at=sub.last_billing_attempt_at,
            one_time_override=OneTimeOverrideResponse(
                pickup_date=override.pickup_date,
                time_slot=override.time_slot,
                reason=override.reason,
                rescheduled_by=override.rescheduled_by,
                rescheduled_at=override.rescheduled_at,
            ) if override else None,
            admin_notes=sub.admin_notes,
        )


class BillingAttemptLogResponse(BaseModel):
    id: str
    billing_cycle: int
    idempotency_key: str
    status: str
    external_attempt_id: str | None = None
    external_order_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    attempted_at: datetime | None = None

    @classmethod
    def from_attempt(cls, attempt: BillingAttempt) -> "BillingAttemptLogResponse":
        return cls(
            id=attempt.id,
            billing_cycle=attempt.billing_cycle,
            idempotency_key=attempt.idempotency_key,
            status=attempt.status.value,
            external_attempt_id=attempt.external_attempt_id,
            external_order_id=attempt.external_order_id,
            error_code=attempt.error_code,
            error_message=attempt.error_message,
            attempted_at=attempt.attempted_at,
        )


class PickupResponse(BaseModel):
    id: str
    order_number: str
    external_order_id: str
    pickup_date: date
    pickup_time_slot: str
    status: str
    notes: str | None = None

    @classmethod
    def from_pickup(cls, pickup: Pickup) -> "PickupResponse":
        return cls(
            id=pickup.id,
            order_number=pickup.order_number,
            external_order_id=pickup.external_order_id,
            pickup_date=pickup.pickup_date,
            pickup_time_slot=pickup.pickup_time_slot,
            status=pickup.status.value,
            notes=pickup.notes,
        )


class SubscriptionDetailResponse(BaseModel):
    subscription: SubscriptionResponse
    recent_attempts: list[BillingAttemptLogResponse] = []
    recent_pickups: list[PickupResponse] = []


class SubscriptionStatsResponse(BaseModel):
    active: int
    paused: int
    cancelled: int
    failing: int
    billing_next_7_days: int


# ── Admin actions ──────────────────────────────────────────

class PauseRequest(BaseModel):
    reason: str | None = None
    paused_until: date | None = None


class OneTimeRescheduleRequest(BaseModel):
    new_pickup_date: date
    new_time_slot: str
    reason: str | None = None
    rescheduled_by: str | None = None


class PermanentRescheduleRequest(BaseModel):
    new_preferred_day: int
    new_time_slot: str
    reason: str | None = None
    rescheduled_by: str | None = None


class LeadHoursUpdate(BaseModel):
    billing_lead_hours: int


class AdminNotesUpdate(BaseModel):
    admin_notes: str | None = None


class BillingOutcomeResponse(BaseModel):
    subscription_id: str
    outcome: str


# ── Availability ───────────────────────────────────────────

class SlotResponse(BaseModel):
    label: str
    start_time: str
    end_time: str


class AvailableDateResponse(BaseModel):
    date: date
    day_of_week: int
    day_name: str
    time_slots: list[SlotResponse] = []


class AvailabilityResponse(BaseModel):
    shop: str
    dates: list[AvailableDateResponse]


# ── Webhooks ───────────────────────────────────────────────

class BillingAttemptWebhook(BaseModel):
    """Body of subscription_billing_attempts/success and /failure."""
    id: int | str
    admin_graphql_api_id: str
    admin_graphql_api_subscription_contract_id: str
    admin_graphql_api_order_id: str | None = None
    idempotency_key: str | None = None
    ready: bool | None = None
    error_code: str | None = None
    error_message: str | None = None


# ── Cron ───────────────────────────────────────────────────

class ShopSweepResponse(BaseModel):
    resumed: int
    billing_processed: int
    billing_succeeded: int
    billing_failed: int
    billing_pending: int
    pickups_materialized: int
    audit_records_purged: int
    errors: list[str] = Field(default_factory=list)


class SweepResponse(BaseModel):
    ran_at: datetime
    shops: dict[str, ShopSweepResponse]
