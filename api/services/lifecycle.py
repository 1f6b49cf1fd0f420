"""
Subscription State Machine — legal transitions and their side effects.

    ACTIVE ──pause / failure threshold──▶ PAUSED
    PAUSED ──resume / paused_until due──▶ ACTIVE (schedule recomputed from today)
    ACTIVE | PAUSED ──cancel──▶ CANCELLED (terminal, dates cleared)

Every function is pure: it takes a subscription plus "now"/"today" and returns
a TransitionResult holding either the updated copy or the error explaining the
rejection. Callers that want exceptions use `.unwrap()`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from zoneinfo import ZoneInfo

from domain.entities import (
    Active, BillingStatus, Cancelled, CustomerSnapshot, Frequency, OneTimeOverride,
    Paused, Schedule, SubscriptionRecord, SubscriptionStatus,
)
from domain.errors import InvalidStateError, SubscriptionError
from services.billing_dates import (
    DEFAULT_POLICY, BillingPolicy, clamp_lead_hours, next_pickup_date,
    next_pickup_date_from_today, parse_time_slot_start, schedule_for,
    validate_lead_hours, validate_weekday,
)

DEFAULT_PAUSE_REASON = "Paused by admin"


@dataclass(frozen=True)
class TransitionResult:
    subscription: SubscriptionRecord | None = None
    error: SubscriptionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> SubscriptionRecord:
        if self.error is not None:
            raise self.error
        return self.subscription


def _ok(sub: SubscriptionRecord) -> TransitionResult:
    return TransitionResult(subscription=sub)


def _reject(message: str) -> TransitionResult:
    return TransitionResult(error=InvalidStateError(message))


def _fresh_schedule(
    sub: SubscriptionRecord, today: date, tz: ZoneInfo, policy: BillingPolicy,
) -> Schedule:
    pickup = next_pickup_date_from_today(today, sub.preferred_day, sub.frequency)
    return schedule_for(
        pickup, sub.preferred_time_slot_start_minutes, sub.billing_lead_hours, tz, policy,
    )


def is_billing_pause(sub: SubscriptionRecord, policy: BillingPolicy = DEFAULT_POLICY) -> bool:
    """PAUSED because billing failures reached the threshold."""
    return sub.status == SubscriptionStatus.PAUSED and sub.billing_failure_count >= policy.max_failures


# ── Creation ───────────────────────────────────────────────

def new_subscription(
    *,
    shop: str,
    external_contract_id: str,
    customer: CustomerSnapshot,
    frequency: Frequency,
    preferred_day: int,
    preferred_time_slot: str,
    today: date,
    tz: ZoneInfo,
    billing_lead_hours: int | None = None,
    policy: BillingPolicy = DEFAULT_POLICY,
) -> SubscriptionRecord:
    validate_weekday(preferred_day)
    lead = clamp_lead_hours(
        billing_lead_hours if billing_lead_hours is not None else policy.default_lead_hours, policy,
    )
    start_minutes = parse_time_slot_start(preferred_time_slot)
    pickup = next_pickup_date_from_today(today, preferred_day, frequency)
    return SubscriptionRecord(
        shop=shop,
        external_contract_id=external_contract_id,
        customer=customer,
        frequency=frequency,
        preferred_day=preferred_day,
        preferred_time_slot=preferred_time_slot,
        preferred_time_slot_start_minutes=start_minutes,
        billing_lead_hours=lead,
        state=Active(schedule_for(pickup, start_minutes, lead, tz, policy)),
    )


# ── Pause / resume / cancel ────────────────────────────────

def pause(
    sub: SubscriptionRecord, reason: str | None = None, paused_until: date | None = None,
) -> TransitionResult:
    if sub.status == SubscriptionStatus.CANCELLED:
        return _reject("Cannot pause a cancelled subscription")
    if sub.status == SubscriptionStatus.PAUSED:
        return _reject("Subscription is already paused")

    state = Paused(reason=reason or DEFAULT_PAUSE_REASON, paused_until=paused_until, schedule=sub.schedule)
    return _ok(replace(sub, state=state))


def resume(
    sub: SubscriptionRecord, today: date, tz: ZoneInfo, policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    if sub.status == SubscriptionStatus.CANCELLED:
        return _reject("Cannot resume a cancelled subscription")
    if sub.status == SubscriptionStatus.ACTIVE:
        return _reject("Subscription is not paused")

    return _ok(replace(
        sub,
        state=Active(_fresh_schedule(sub, today, tz, policy)),
        billing_failure_count=0,
        billing_failure_reason=None,
        one_time_override=None,
    ))


def resume_if_due(
    sub: SubscriptionRecord, today: date, tz: ZoneInfo, policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    """Resume a PAUSED subscription whose `paused_until` has arrived."""
    if sub.status != SubscriptionStatus.PAUSED:
        return _reject("Subscription is not paused")
    if sub.paused_until is None or sub.paused_until > today:
        return _reject("Subscription is not due to resume")
    return resume(sub, today, tz, policy)


def cancel(sub: SubscriptionRecord, now: datetime) -> TransitionResult:
    if sub.status == SubscriptionStatus.CANCELLED:
        return _reject("Subscription is already cancelled")
    return _ok(replace(sub, state=Cancelled(cancelled_at=now), one_time_override=None))


# ── Schedule changes ───────────────────────────────────────

def skip_next(
    sub: SubscriptionRecord, tz: ZoneInfo, policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    """Drop the upcoming occurrence and move to the one after it."""
    if sub.status != SubscriptionStatus.ACTIVE:
        return _reject(f"Only active subscriptions can skip a pickup (status {sub.status.value})")

    pickup = next_pickup_date(sub.next_pickup_date, sub.preferred_day, sub.frequency)
    schedule = schedule_for(
        pickup, sub.preferred_time_slot_start_minutes, sub.billing_lead_hours, tz, policy,
    )
    return _ok(replace(sub, state=Active(schedule), one_time_override=None))


def change_lead_hours(
    sub: SubscriptionRecord, hours: int, tz: ZoneInfo, policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    if sub.status == SubscriptionStatus.CANCELLED:
        return _reject("Cannot change billing lead time of a cancelled subscription")
    try:
        validate_lead_hours(hours, policy)
    except SubscriptionError as e:
        return TransitionResult(error=e)

    updated = replace(sub, billing_lead_hours=hours)
    if sub.schedule is None:
        return _ok(updated)

    schedule = schedule_for(
        sub.next_pickup_date, parse_time_slot_start(sub.effective_time_slot), hours, tz, policy,
    )
    return _ok(_with_schedule(updated, schedule))


def _with_schedule(sub: SubscriptionRecord, schedule: Schedule) -> SubscriptionRecord:
    """Swap the schedule, keeping the current status."""
    if isinstance(sub.state, Active):
        return replace(sub, state=Active(schedule))
    if isinstance(sub.state, Paused):
        return replace(sub, state=replace(sub.state, schedule=schedule))
    return sub


def reschedule_once(
    sub: SubscriptionRecord,
    *,
    pickup_date: date,
    time_slot: str,
    reason: str | None,
    rescheduled_by: str | None,
    now: datetime,
    tz: ZoneInfo,
    policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    if sub.status != SubscriptionStatus.ACTIVE:
        return _reject("Only active subscriptions can be rescheduled for a single pickup")

    schedule = schedule_for(
        pickup_date, parse_time_slot_start(time_slot), sub.billing_lead_hours, tz, policy,
    )
    override = OneTimeOverride(
        pickup_date=pickup_date,
        time_slot=time_slot,
        reason=reason,
        rescheduled_by=rescheduled_by,
        rescheduled_at=now,
    )
    return _ok(replace(sub, state=Active(schedule), one_time_override=override))


def reschedule_permanently(
    sub: SubscriptionRecord,
    *,
    preferred_day: int,
    time_slot: str,
    today: date,
    tz: ZoneInfo,
    policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    if sub.status == SubscriptionStatus.CANCELLED:
        return _reject("Cannot reschedule a cancelled subscription")

    updated = replace(
        sub,
        preferred_day=preferred_day,
        preferred_time_slot=time_slot,
        preferred_time_slot_start_minutes=parse_time_slot_start(time_slot),
        one_time_override=None,
    )
    return _ok(_with_schedule(updated, _fresh_schedule(updated, today, tz, policy)))


def clear_override(
    sub: SubscriptionRecord, today: date, tz: ZoneInfo, policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    if sub.one_time_override is None:
        return _reject("No one-time reschedule to clear")
    updated = replace(sub, one_time_override=None)
    return _ok(_with_schedule(updated, _fresh_schedule(updated, today, tz, policy)))


def advance_after_pickup(
    sub: SubscriptionRecord, tz: ZoneInfo, policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    """Move an ACTIVE subscription past the occurrence that was just materialized."""
    if sub.status != SubscriptionStatus.ACTIVE:
        return _reject("Only active subscriptions advance their schedule")

    pickup = next_pickup_date(sub.next_pickup_date, sub.preferred_day, sub.frequency)
    schedule = schedule_for(
        pickup, sub.preferred_time_slot_start_minutes, sub.billing_lead_hours, tz, policy,
    )
    return _ok(replace(sub, state=Active(schedule), one_time_override=None))


# ── Billing outcomes ───────────────────────────────────────

def record_billing_success(
    sub: SubscriptionRecord,
    *,
    now: datetime,
    tz: ZoneInfo,
    attempt_id: str | None = None,
    policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    """
    Close the billed cycle: advance one interval from the billed pickup date,
    bump the cycle counter and clear failures and any one-time override.

    A subscription paused by billing failures becomes ACTIVE again; one paused
    by an admin stays PAUSED with its retained schedule advanced.
    """
    if sub.status == SubscriptionStatus.CANCELLED:
        return _reject("Cannot record billing on a cancelled subscription")
    if sub.next_pickup_date is None:
        return _reject("Subscription has no scheduled pickup to bill")

    pickup = next_pickup_date(sub.next_pickup_date, sub.preferred_day, sub.frequency)
    schedule = schedule_for(
        pickup, sub.preferred_time_slot_start_minutes, sub.billing_lead_hours, tz, policy,
    )
    reactivate = is_billing_pause(sub, policy)
    updated = replace(
        sub,
        billing_cycle_count=sub.billing_cycle_count + 1,
        billing_failure_count=0,
        billing_failure_reason=None,
        last_billing_status=BillingStatus.SUCCESS,
        last_billing_attempt_at=now,
        last_billing_attempt_id=attempt_id or sub.last_billing_attempt_id,
        one_time_override=None,
    )
    if reactivate:
        return _ok(replace(updated, state=Active(schedule)))
    return _ok(_with_schedule(updated, schedule))


def record_billing_failure(
    sub: SubscriptionRecord,
    *,
    error_code: str,
    error_message: str | None,
    now: datetime,
    attempt_id: str | None = None,
    policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    """
    Count a failed charge; pause once the threshold is reached. The schedule stays put.

    The count never exceeds `policy.max_failures`. Reaching it on an admin-paused
    subscription replaces the admin pause with the billing pause.
    """
    if sub.status == SubscriptionStatus.CANCELLED:
        return _reject("Cannot record billing on a cancelled subscription")

    failures = min(sub.billing_failure_count + 1, policy.max_failures)
    updated = replace(
        sub,
        billing_failure_count=failures,
        billing_failure_reason=error_message or error_code,
        last_billing_status=BillingStatus.FAILED,
        last_billing_attempt_at=now,
        last_billing_attempt_id=attempt_id or sub.last_billing_attempt_id,
    )
    if failures >= policy.max_failures and not is_billing_pause(sub, policy):
        state = Paused(reason=f"Billing failed {failures} times: {error_code}", schedule=sub.schedule)
        return _ok(replace(updated, state=state))
    return _ok(updated)


def reset_for_retry(
    sub: SubscriptionRecord, today: date, tz: ZoneInfo, policy: BillingPolicy = DEFAULT_POLICY,
) -> TransitionResult:
    """Make a subscription eligible for a manual billing retry."""
    if sub.status == SubscriptionStatus.CANCELLED:
        return _reject("Cannot retry billing for a cancelled subscription")
    if sub.status == SubscriptionStatus.ACTIVE:
        return _ok(sub)
    if not is_billing_pause(sub, policy):
        return _reject("Subscription was paused manually; resume it instead")

    schedule = sub.schedule or _fresh_schedule(sub, today, tz, policy)
    return _ok(replace(sub, state=Active(schedule), billing_failure_count=0))
