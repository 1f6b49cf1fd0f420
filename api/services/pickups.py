"""Pickup materialization — turns a billed or due occurrence into a PickupSchedule row."""

import logging
from datetime import date, datetime

from domain.entities import Pickup, PickupStatus, SubscriptionRecord
from domain.errors import DuplicateRecordError
from repositories.base import Store
from services.clock import format_date_iso
from services.pickup_events import PickupEvents

logger = logging.getLogger(__name__)


def subscription_order_number(subscription_id: str) -> str:
    """Human-readable reference: SUB-XXXXXX from the subscription id."""
    return f"SUB-{subscription_id.replace('-', '')[-6:].upper()}"


def subscription_order_id(subscription_id: str, pickup_date: date) -> str:
    return f"subscription-{subscription_id}-{format_date_iso(pickup_date)}"


def append_note(notes: str | None, line: str) -> str:
    return f"{notes}\n{line}" if notes else line


async def materialize_pickup(
    store: Store,
    sub: SubscriptionRecord,
    pickup_date: date,
    time_slot: str,
    events: PickupEvents,
    order_id: str | None = None,
) -> Pickup:
    """
    Create the SCHEDULED pickup for one occurrence, or return the one that
    already exists for that subscription and date.
    """
    existing = await store.pickups.find_for_subscription_date(sub.id, pickup_date)
    if existing is not None:
        return existing

    pickup = Pickup(
        shop=sub.shop,
        external_order_id=order_id or subscription_order_id(sub.id, pickup_date),
        order_number=subscription_order_number(sub.id),
        customer=sub.customer,
        pickup_date=pickup_date,
        pickup_time_slot=time_slot,
        status=PickupStatus.SCHEDULED,
        subscription_id=sub.id,
    )
    try:
        await store.pickups.add(pickup)
    except DuplicateRecordError:
        logger.info("Pickup for order %s already materialized", pickup.external_order_id)
        existing = await store.pickups.find_for_subscription_date(sub.id, pickup_date)
        if existing is None:
            raise
        return existing

    logger.info(
        "Pickup materialized: subscription=%s date=%s slot=%s",
        sub.id, format_date_iso(pickup_date), time_slot,
    )
    await events.pickup_created(pickup)
    return pickup


async def rewrite_pending_pickup(
    store: Store,
    sub: SubscriptionRecord,
    pickup_date: date,
    time_slot: str,
    now: datetime,
    events: PickupEvents,
) -> Pickup | None:
    """Move the latest SCHEDULED pickup in place, leaving an audit note. None when there is none."""
    pickup = await store.pickups.latest_scheduled(sub.id)
    if pickup is None:
        return None

    pickup.pickup_date = pickup_date
    pickup.pickup_time_slot = time_slot
    pickup.notes = append_note(pickup.notes, f"[Rescheduled: {now.isoformat()}]")
    await store.pickups.save(pickup)
    logger.info(
        "Pending pickup %s moved to %s %s", pickup.id, format_date_iso(pickup_date), time_slot,
    )
    await events.pickup_rescheduled(pickup)
    return pickup
