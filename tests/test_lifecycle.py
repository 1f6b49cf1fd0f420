"""Tests for subscription state transitions."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from domain.entities import (
    BillingStatus, CustomerSnapshot, Frequency, Paused, SubscriptionStatus,
)
from domain.errors import InvalidStateError, ValidationError
from services import lifecycle
from services.billing_dates import BillingPolicy

TZ = ZoneInfo("America/Los_Angeles")
NOW = datetime(2026, 2, 27, 10, 0, tzinfo=TZ)
TODAY = date(2026, 2, 27)
POLICY = BillingPolicy()


def _sub(**kwargs):
    defaults = dict(
        shop="pickup-test.myshopify.com",
        external_contract_id="gid://shopify/SubscriptionContract/1",
        customer=CustomerSnapshot(customer_id="gid://shopify/Customer/1"),
        frequency=Frequency.WEEKLY,
        preferred_day=2,
        preferred_time_slot="9:00 AM - 11:00 AM",
        today=TODAY,
        tz=TZ,
    )
    defaults.update(kwargs)
    return lifecycle.new_subscription(**defaults)


def test_new_subscription_is_active_with_schedule():
    sub = _sub()
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.next_pickup_date == date(2026, 3, 3)
    assert sub.next_billing_date == datetime(2026, 2, 27, 21, 0, tzinfo=TZ)
    assert sub.billing_lead_hours == 84
    assert sub.preferred_time_slot_start_minutes == 540
    assert sub.discount_percent == 10.0


def test_new_subscription_clamps_lead_and_rejects_bad_weekday():
    assert _sub(billing_lead_hours=400).billing_lead_hours == 168
    with pytest.raises(ValidationError):
        _sub(preferred_day=7)


def test_pause_then_resume_recomputes_from_today():
    """Resuming starts the cadence over from the resume date."""
    paused = lifecycle.pause(_sub(), "Vacation", date(2026, 3, 20)).unwrap()
    assert paused.status == SubscriptionStatus.PAUSED
    assert paused.pause_reason == "Vacation"
    assert paused.paused_until == date(2026, 3, 20)

    resumed = lifecycle.resume(paused, date(2026, 3, 20), TZ).unwrap()
    assert resumed.status == SubscriptionStatus.ACTIVE
    assert resumed.next_pickup_date == date(2026, 3, 24)
    assert resumed.pause_reason is None


def test_pause_default_reason():
    assert lifecycle.pause(_sub()).unwrap().pause_reason == lifecycle.DEFAULT_PAUSE_REASON


def test_illegal_transitions_rejected():
    sub = _sub()
    cancelled = lifecycle.cancel(sub, NOW).unwrap()
    paused = lifecycle.pause(sub).unwrap()

    result = lifecycle.pause(cancelled)
    assert not result.ok
    assert isinstance(result.error, InvalidStateError)
    assert result.error.message == "Cannot pause a cancelled subscription"

    assert lifecycle.pause(paused).error.message == "Subscription is already paused"
    assert lifecycle.resume(sub, TODAY, TZ).error.message == "Subscription is not paused"
    assert not lifecycle.resume(cancelled, TODAY, TZ).ok
    assert not lifecycle.cancel(cancelled, NOW).ok
    with pytest.raises(InvalidStateError):
        lifecycle.skip_next(paused, TZ).unwrap()


def test_cancel_clears_dates():
    cancelled = lifecycle.cancel(_sub(), NOW).unwrap()
    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.next_pickup_date is None
    assert cancelled.next_billing_date is None
    assert cancelled.state.cancelled_at == NOW


def test_resume_if_due():
    paused = lifecycle.pause(_sub(), paused_until=date(2026, 3, 10)).unwrap()
    assert not lifecycle.resume_if_due(paused, date(2026, 3, 9), TZ).ok
    assert lifecycle.resume_if_due(paused, date(2026, 3, 10), TZ).ok

    indefinite = lifecycle.pause(_sub()).unwrap()
    assert not lifecycle.resume_if_due(indefinite, date(2027, 1, 1), TZ).ok


def test_skip_next_moves_one_interval():
    skipped = lifecycle.skip_next(_sub(), TZ).unwrap()
    assert skipped.next_pickup_date == date(2026, 3, 10)
    assert skipped.next_billing_date == datetime(2026, 3, 6, 20, 0, tzinfo=TZ)


def test_billing_success_advances_and_counts():
    billed = lifecycle.record_billing_success(_sub(), now=NOW, tz=TZ, attempt_id="a1").unwrap()
    assert billed.billing_cycle_count == 1
    assert billed.next_pickup_date == date(2026, 3, 10)
    assert billed.last_billing_status == BillingStatus.SUCCESS
    assert billed.last_billing_attempt_id == "a1"


def test_failures_escalate_to_pause_and_keep_schedule():
    sub = _sub()
    for n in range(1, 4):
        sub = lifecycle.record_billing_failure(
            sub, error_code="CARD_DECLINED", error_message="Card declined", now=NOW, policy=POLICY,
        ).unwrap()
        assert sub.billing_failure_count == n

    assert sub.status == SubscriptionStatus.PAUSED
    assert sub.pause_reason == "Billing failed 3 times: CARD_DECLINED"
    assert sub.next_pickup_date == date(2026, 3, 3)
    assert lifecycle.is_billing_pause(sub, POLICY)


def test_failure_count_stops_at_threshold():
    """Late failure confirmations on a billing-paused subscription keep the count at the maximum."""
    sub = _sub()
    for _ in range(5):
        sub = lifecycle.record_billing_failure(
            sub, error_code="CARD_DECLINED", error_message=None, now=NOW, policy=POLICY,
        ).unwrap()
    assert sub.billing_failure_count == POLICY.max_failures
    assert sub.pause_reason == "Billing failed 3 times: CARD_DECLINED"


def test_threshold_on_admin_pause_takes_over_reason():
    """Failures reaching the maximum while paused by hand turn it into a billing pause."""
    sub = lifecycle.pause(_sub(), "vacation", paused_until=date(2026, 3, 20)).unwrap()
    for n in range(1, 3):
        sub = lifecycle.record_billing_failure(
            sub, error_code="CARD_DECLINED", error_message=None, now=NOW, policy=POLICY,
        ).unwrap()
        assert sub.pause_reason == "vacation"

    sub = lifecycle.record_billing_failure(
        sub, error_code="CARD_DECLINED", error_message=None, now=NOW, policy=POLICY,
    ).unwrap()
    assert sub.billing_failure_count == 3
    assert sub.status == SubscriptionStatus.PAUSED
    assert sub.pause_reason == "Billing failed 3 times: CARD_DECLINED"
    assert sub.paused_until is None
    assert sub.next_pickup_date == date(2026, 3, 3)
    assert lifecycle.is_billing_pause(sub, POLICY)


def test_retry_only_reactivates_billing_pauses():
    sub = _sub()
    for _ in range(3):
        sub = lifecycle.record_billing_failure(
            sub, error_code="CARD_DECLINED", error_message=None, now=NOW,
        ).unwrap()
    ready = lifecycle.reset_for_retry(sub, TODAY, TZ).unwrap()
    assert ready.status == SubscriptionStatus.ACTIVE
    assert ready.billing_failure_count == 0

    manual = lifecycle.pause(_sub()).unwrap()
    assert lifecycle.reset_for_retry(manual, TODAY, TZ).error.message == (
        "Subscription was paused manually; resume it instead"
    )


def test_success_on_billing_pause_reactivates():
    sub = _sub()
    for _ in range(3):
        sub = lifecycle.record_billing_failure(sub, error_code="X", error_message=None, now=NOW).unwrap()
    billed = lifecycle.record_billing_success(sub, now=NOW, tz=TZ).unwrap()
    assert billed.status == SubscriptionStatus.ACTIVE
    assert billed.billing_failure_count == 0


def test_success_on_admin_pause_stays_paused():
    paused = lifecycle.pause(_sub(), "Vacation").unwrap()
    billed = lifecycle.record_billing_success(paused, now=NOW, tz=TZ).unwrap()
    assert isinstance(billed.state, Paused)
    assert billed.next_pickup_date == date(2026, 3, 10)


def test_one_time_override_then_cadence_resumes():
    """The override moves one occurrence; billing success goes back to the preferred weekday."""
    moved = lifecycle.reschedule_once(
        _sub(), pickup_date=date(2026, 3, 5), time_slot="2:00 PM - 4:00 PM",
        reason="Doctor", rescheduled_by="staff@shop", now=NOW, tz=TZ,
    ).unwrap()
    assert moved.next_pickup_date == date(2026, 3, 5)
    assert moved.effective_time_slot == "2:00 PM - 4:00 PM"
    assert moved.next_billing_date == datetime(2026, 3, 2, 2, 0, tzinfo=TZ)

    billed = lifecycle.record_billing_success(moved, now=NOW, tz=TZ).unwrap()
    assert billed.one_time_override is None
    assert billed.next_pickup_date == date(2026, 3, 17)
    assert billed.effective_time_slot == "9:00 AM - 11:00 AM"


def test_clear_override_requires_one():
    assert lifecycle.clear_override(_sub(), TODAY, TZ).error.message == "No one-time reschedule to clear"


def test_permanent_reschedule_keeps_paused_status():
    paused = lifecycle.pause(_sub()).unwrap()
    moved = lifecycle.reschedule_permanently(
        paused, preferred_day=5, time_slot="2:00 PM - 4:00 PM", today=TODAY, tz=TZ,
    ).unwrap()
    assert moved.status == SubscriptionStatus.PAUSED
    assert moved.preferred_day == 5
    assert moved.next_pickup_date == date(2026, 3, 6)


def test_change_lead_hours_validates_and_recomputes():
    sub = _sub()
    assert isinstance(lifecycle.change_lead_hours(sub, 0, TZ).error, ValidationError)
    updated = lifecycle.change_lead_hours(sub, 24, TZ).unwrap()
    assert updated.next_billing_date == datetime(2026, 3, 2, 9, 0, tzinfo=TZ)
