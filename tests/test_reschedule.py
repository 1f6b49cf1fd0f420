"""Tests for one-time and permanent rescheduling."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from conftest import SHOP
from domain.entities import PickupStatus, SubscriptionStatus
from domain.errors import (
    InvalidStateError, NotFoundError, SchedulingConflictError, ValidationError,
)
from services import lifecycle
from services.billing import BillingOrchestrator
from services.pickups import materialize_pickup
from services.reschedule import RescheduleService

TZ = ZoneInfo("America/Los_Angeles")


def _service(store, clock, policy, events=None):
    return RescheduleService(store, clock, policy, events)


@pytest.mark.asyncio
async def test_one_time_reschedule_moves_next_pickup(store, clock, policy, make_subscription):
    sub = await make_subscription()
    updated = await _service(store, clock, policy).one_time_reschedule(
        SHOP, sub.id, date(2026, 3, 5), "2:00 PM - 4:00 PM",
        reason="Out of town", rescheduled_by="staff@shop",
    )
    assert updated.next_pickup_date == date(2026, 3, 5)
    assert updated.next_billing_date == datetime(2026, 3, 2, 2, 0, tzinfo=TZ)
    assert updated.one_time_override.rescheduled_by == "staff@shop"
    assert updated.preferred_day == 2

    stored = await store.subscriptions.get(SHOP, sub.id)
    assert stored.one_time_override.pickup_date == date(2026, 3, 5)


@pytest.mark.asyncio
async def test_one_time_reschedule_rejects_billing_in_the_past(store, clock, policy, make_subscription):
    """Tomorrow minus 84 hours has already passed; nothing is saved."""
    sub = await make_subscription()
    with pytest.raises(SchedulingConflictError):
        await _service(store, clock, policy).one_time_reschedule(
            SHOP, sub.id, date(2026, 2, 28), "9:00 AM - 11:00 AM",
        )
    stored = await store.subscriptions.get(SHOP, sub.id)
    assert stored.one_time_override is None
    assert stored.next_pickup_date == date(2026, 3, 3)


@pytest.mark.asyncio
async def test_one_time_reschedule_requires_active(store, clock, policy, make_subscription):
    sub = await make_subscription()
    await store.subscriptions.save(lifecycle.pause(sub).unwrap())
    with pytest.raises(InvalidStateError):
        await _service(store, clock, policy).one_time_reschedule(
            SHOP, sub.id, date(2026, 3, 12), "9:00 AM - 11:00 AM",
        )


@pytest.mark.asyncio
async def test_blank_slot_and_unknown_subscription(store, clock, policy, make_subscription):
    sub = await make_subscription()
    service = _service(store, clock, policy)
    with pytest.raises(ValidationError):
        await service.one_time_reschedule(SHOP, sub.id, date(2026, 3, 12), "  ")
    with pytest.raises(NotFoundError):
        await service.one_time_reschedule(SHOP, "missing", date(2026, 3, 12), "9:00 AM - 11:00 AM")
    with pytest.raises(NotFoundError):
        await service.one_time_reschedule("other-shop.myshopify.com", sub.id, date(2026, 3, 12), "9:00 AM - 11:00 AM")


@pytest.mark.asyncio
async def test_override_is_billed_then_cadence_resumes(store, provider, clock, policy, make_subscription):
    """The overridden occurrence is materialized; the one after is back on Tuesday."""
    sub = await make_subscription()
    await _service(store, clock, policy).one_time_reschedule(
        SHOP, sub.id, date(2026, 3, 5), "2:00 PM - 4:00 PM",
    )
    clock.set(datetime(2026, 3, 2, 8, 0, tzinfo=TZ))
    await BillingOrchestrator(store, provider, clock, policy).process_due_billings(SHOP)

    pickup = store.pickups.all()[0]
    assert pickup.pickup_date == date(2026, 3, 5)
    assert pickup.pickup_time_slot == "2:00 PM - 4:00 PM"

    updated = await store.subscriptions.get(SHOP, sub.id)
    assert updated.one_time_override is None
    assert updated.next_pickup_date == date(2026, 3, 17)


@pytest.mark.asyncio
async def test_clear_override_round_trip(store, clock, policy, make_subscription):
    """Clearing an override restores the regular next pickup."""
    sub = await make_subscription()
    service = _service(store, clock, policy)
    await service.one_time_reschedule(SHOP, sub.id, date(2026, 3, 5), "2:00 PM - 4:00 PM")

    cleared = await service.clear_one_time_reschedule(SHOP, sub.id)
    assert cleared.one_time_override is None
    assert cleared.next_pickup_date == sub.next_pickup_date
    assert cleared.next_billing_date == sub.next_billing_date

    with pytest.raises(InvalidStateError):
        await service.clear_one_time_reschedule(SHOP, sub.id)


@pytest.mark.asyncio
async def test_permanent_reschedule_changes_cadence_and_notes(store, clock, policy, make_subscription):
    sub = await make_subscription()
    updated = await _service(store, clock, policy).permanent_reschedule(
        SHOP, sub.id, 5, "2:00 PM - 4:00 PM", reason="New work hours", rescheduled_by="Sam",
    )
    assert updated.preferred_day == 5
    assert updated.preferred_time_slot_start_minutes == 840
    assert updated.next_pickup_date == date(2026, 3, 6)
    assert "Permanent reschedule by Sam: Changed to Friday at 2:00 PM - 4:00 PM - New work hours" in updated.admin_notes

    with pytest.raises(ValidationError):
        await _service(store, clock, policy).permanent_reschedule(SHOP, sub.id, 9, "2:00 PM - 4:00 PM")


@pytest.mark.asyncio
async def test_permanent_reschedule_moves_pending_pickup(store, clock, policy, events, make_subscription):
    """The scheduled pickup row is moved in place with an audit note."""
    sub = await make_subscription()
    pickup = await materialize_pickup(store, sub, sub.next_pickup_date, sub.preferred_time_slot, events)

    await _service(store, clock, policy, events).permanent_reschedule(SHOP, sub.id, 5, "2:00 PM - 4:00 PM")

    pickups = store.pickups.all()
    assert len(pickups) == 1
    assert pickups[0].id == pickup.id
    assert pickups[0].pickup_date == date(2026, 3, 6)
    assert pickups[0].pickup_time_slot == "2:00 PM - 4:00 PM"
    assert pickups[0].status == PickupStatus.SCHEDULED
    assert pickups[0].notes.startswith("[Rescheduled: ")
    assert events.delivered[-1] == ("pickup.rescheduled", pickup.id)


@pytest.mark.asyncio
async def test_permanent_reschedule_of_cancelled_rejected(store, clock, policy, make_subscription):
    sub = await make_subscription()
    await store.subscriptions.save(lifecycle.cancel(sub, clock.now()).unwrap())
    with pytest.raises(InvalidStateError):
        await _service(store, clock, policy).permanent_reschedule(SHOP, sub.id, 5, "2:00 PM - 4:00 PM")
    assert (await store.subscriptions.get(SHOP, sub.id)).status == SubscriptionStatus.CANCELLED


@pytest.mark.asyncio
async def test_week_long_lead_rejects_pickup_two_days_out(store, clock, policy, make_subscription):
    """With 168 lead hours a pickup two days away would have billed five days ago."""
    sub = await make_subscription(lead_hours=168)
    with pytest.raises(SchedulingConflictError):
        await _service(store, clock, policy).one_time_reschedule(
            SHOP, sub.id, date(2026, 3, 1), "9:00 AM - 11:00 AM",
        )
    stored = await store.subscriptions.get(SHOP, sub.id)
    assert stored == sub


@pytest.mark.asyncio
async def test_permanent_reschedule_drops_pending_override(store, clock, policy, make_subscription):
    """After a permanent change the overridden date never comes back."""
    sub = await make_subscription()
    service = _service(store, clock, policy)
    await service.one_time_reschedule(SHOP, sub.id, date(2026, 3, 5), "2:00 PM - 4:00 PM")

    updated = await service.permanent_reschedule(SHOP, sub.id, 6, "9:00 AM - 11:00 AM")
    assert updated.one_time_override is None
    assert updated.next_pickup_date == date(2026, 2, 28)

    skipped = lifecycle.skip_next(updated, TZ, policy).unwrap()
    assert skipped.next_pickup_date == date(2026, 3, 7)
