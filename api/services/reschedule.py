"""
Reschedule Resolver — one-time and permanent changes to a subscription's pickups.

Rules:
  - One-time: ACTIVE only; moves the next occurrence, billing recomputed from it;
    rejected when that billing instant is already in the past
  - Permanent: any non-cancelled status; new weekday/slot, schedule recomputed
    from today, pending one-time override dropped, admin note appended
  - The latest SCHEDULED pickup is moved in place (no duplicate row)
  - Calendar sync is best-effort
"""

from __future__ import annotations

import logging
from datetime import date

from domain.entities import SubscriptionRecord
from domain.errors import NotFoundError, SchedulingConflictError, ValidationError
from repositories.base import Store
from services import lifecycle
from services.billing_dates import BillingPolicy, validate_weekday
from services.clock import BusinessClock, day_name
from services.pickup_events import PickupEvents
from services.pickups import append_note, rewrite_pending_pickup

logger = logging.getLogger(__name__)


def _require_slot(time_slot: str | None) -> str:
    if not time_slot or not time_slot.strip():
        raise ValidationError("Time slot is required")
    return time_slot.strip()


class RescheduleService:

    def __init__(
        self,
        store: Store,
        clock: BusinessClock,
        policy: BillingPolicy | None = None,
        pickup_events: PickupEvents | None = None,
    ):
        self.store = store
        self.clock = clock
        self.policy = policy or BillingPolicy.from_settings()
        self.pickup_events = pickup_events or PickupEvents()

    async def _load(self, shop: str, subscription_id: str) -> SubscriptionRecord:
        sub = await self.store.subscriptions.get(shop, subscription_id)
        if sub is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return sub

    async def one_time_reschedule(
        self,
        shop: str,
        subscription_id: str,
        new_pickup_date: date,
        new_time_slot: str,
        reason: str | None = None,
        rescheduled_by: str | None = None,
    ) -> SubscriptionRecord:
        """Move only the next occurrence; the regular cadence resumes after it is billed."""
        time_slot = _require_slot(new_time_slot)
        sub = await self._load(shop, subscription_id)
        now = self.clock.now()

        updated = lifecycle.reschedule_once(
            sub,
            pickup_date=new_pickup_date,
            time_slot=time_slot,
            reason=reason,
            rescheduled_by=rescheduled_by,
            now=now,
            tz=self.clock.tz,
            policy=self.policy,
        ).unwrap()

        if updated.next_billing_date < now:
            raise SchedulingConflictError(
                f"Billing for {new_pickup_date.isoformat()} would fall in the past; "
                f"choose a pickup at least {sub.billing_lead_hours} hours from now"
            )

        await self.store.subscriptions.save(updated)
        await rewrite_pending_pickup(
            self.store, updated, new_pickup_date, time_slot, now, self.pickup_events,
        )
        logger.info(
            "One-time reschedule for %s: %s %s (by %s)",
            updated.id, new_pickup_date.isoformat(), time_slot, rescheduled_by or "unknown",
        )
        return updated

    async def permanent_reschedule(
        self,
        shop: str,
        subscription_id: str,
        new_preferred_day: int,
        new_time_slot: str,
        reason: str | None = None,
        rescheduled_by: str | None = None,
    ) -> SubscriptionRecord:
        validate_weekday(new_preferred_day)
        time_slot = _require_slot(new_time_slot)
        sub = await self._load(shop, subscription_id)
        now = self.clock.now()

        updated = lifecycle.reschedule_permanently(
            sub,
            preferred_day=new_preferred_day,
            time_slot=time_slot,
            today=self.clock.today(),
            tz=self.clock.tz,
            policy=self.policy,
        ).unwrap()

        note = (
            f"[{now.isoformat()}] Permanent reschedule by {rescheduled_by or 'admin'}: "
            f"Changed to {day_name(new_preferred_day)} at {time_slot}"
        )
        if reason:
            note = f"{note} - {reason}"
        updated.admin_notes = append_note(updated.admin_notes, note)

        await self.store.subscriptions.save(updated)
        if updated.next_pickup_date is not None:
            await rewrite_pending_pickup(
                self.store, updated, updated.next_pickup_date, time_slot, now, self.pickup_events,
            )
        logger.info(
            "Permanent reschedule for %s: %s at %s",
            updated.id, day_name(new_preferred_day), time_slot,
        )
        return updated

    async def clear_one_time_reschedule(self, shop: str, subscription_id: str) -> SubscriptionRecord:
        """Drop a pending override and go back to the regular cadence from today."""
        sub = await self._load(shop, subscription_id)
        updated = lifecycle.clear_override(
            sub, self.clock.today(), self.clock.tz, self.policy,
        ).unwrap()
        await self.store.subscriptions.save(updated)
        logger.info("One-time reschedule cleared for %s", updated.id)
        return updated
