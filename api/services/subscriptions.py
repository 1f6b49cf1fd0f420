"""Administrative subscription operations and queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, timedelta

from domain.entities import (
    BillingAttempt, CustomerSnapshot, Frequency, Pickup, SubscriptionRecord, SubscriptionStatus,
)
from domain.errors import NotFoundError
from repositories.base import Store
from services import lifecycle
from services.billing_dates import BillingPolicy
from services.clock import BusinessClock
from services.shopify_billing import BillingProvider

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionDetail:
    subscription: SubscriptionRecord
    recent_attempts: list[BillingAttempt] = field(default_factory=list)
    recent_pickups: list[Pickup] = field(default_factory=list)


@dataclass
class SubscriptionStats:
    active: int = 0
    paused: int = 0
    cancelled: int = 0
    failing: int = 0
    billing_next_7_days: int = 0


class SubscriptionService:

    def __init__(
        self,
        store: Store,
        clock: BusinessClock,
        provider: BillingProvider | None = None,
        policy: BillingPolicy | None = None,
    ):
        self.store = store
        self.clock = clock
        self.provider = provider
        self.policy = policy or BillingPolicy.from_settings()

    async def _load(self, shop: str, subscription_id: str) -> SubscriptionRecord:
        sub = await self.store.subscriptions.get(shop, subscription_id)
        if sub is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return sub

    # ── Queries ────────────────────────────────────────────

    async def get_subscription(self, shop: str, subscription_id: str) -> SubscriptionDetail:
        sub = await self._load(shop, subscription_id)
        return SubscriptionDetail(
            subscription=sub,
            recent_attempts=await self.store.attempts.list_recent(sub.id, limit=10),
            recent_pickups=await self.store.pickups.list_recent(sub.id, limit=10),
        )

    async def list_subscriptions(
        self, shop: str, status: SubscriptionStatus | None = None,
    ) -> list[SubscriptionRecord]:
        return await self.store.subscriptions.list_for_shop(shop, status)

    async def get_upcoming_billings(self, shop: str, days_ahead: int = 7) -> list[SubscriptionRecord]:
        now = self.clock.now()
        return await self.store.subscriptions.list_billing_between(
            shop, now, now + timedelta(days=days_ahead),
        )

    async def get_failed_billings(self, shop: str) -> list[SubscriptionDetail]:
        failed = await self.store.subscriptions.list_failed_billing(shop)
        return [
            SubscriptionDetail(
                subscription=sub,
                recent_attempts=await self.store.attempts.list_recent(sub.id, limit=5),
            )
            for sub in failed
        ]

    async def get_stats(self, shop: str) -> SubscriptionStats:
        stats = SubscriptionStats()
        for sub in await self.store.subscriptions.list_for_shop(shop):
            if sub.status == SubscriptionStatus.ACTIVE:
                stats.active += 1
            elif sub.status == SubscriptionStatus.PAUSED:
                stats.paused += 1
            else:
                stats.cancelled += 1
            if sub.billing_failure_count > 0 and sub.status != SubscriptionStatus.CANCELLED:
                stats.failing += 1
        stats.billing_next_7_days = len(await self.get_upcoming_billings(shop, 7))
        return stats

    # ── Creation ───────────────────────────────────────────

    async def create_subscription(
        self,
        shop: str,
        contract_id: str,
        customer: CustomerSnapshot,
        frequency: Frequency,
        preferred_day: int,
        preferred_time_slot: str,
        billing_lead_hours: int | None = None,
    ) -> SubscriptionRecord:
        """Register a subscription for a newly created contract. Re-delivery returns the existing one."""
        existing = await self.store.subscriptions.get_by_contract(shop, contract_id)
        if existing is not None:
            return existing

        sub = lifecycle.new_subscription(
            shop=shop,
            external_contract_id=contract_id,
            customer=customer,
            frequency=frequency,
            preferred_day=preferred_day,
            preferred_time_slot=preferred_time_slot,
            today=self.clock.today(),
            tz=self.clock.tz,
            billing_lead_hours=billing_lead_hours,
            policy=self.policy,
        )
        sub.created_at = self.clock.now()
        await self.store.subscriptions.add(sub)
        logger.info(
            "Subscription %s created for contract %s; first pickup %s",
            sub.id, contract_id, sub.next_pickup_date,
        )
        return sub

    # ── Lifecycle actions ──────────────────────────────────

    async def pause(
        self, shop: str, subscription_id: str, reason: str | None = None, paused_until: date | None = None,
    ) -> SubscriptionRecord:
        sub = await self._load(shop, subscription_id)
        updated = lifecycle.pause(sub, reason, paused_until).unwrap()
        await self.store.subscriptions.save(updated)
        logger.info("Subscription %s paused until %s: %s", updated.id, paused_until, updated.pause_reason)
        return updated

    async def resume(self, shop: str, subscription_id: str) -> SubscriptionRecord:
        sub = await self._load(shop, subscription_id)
        updated = lifecycle.resume(sub, self.clock.today(), self.clock.tz, self.policy).unwrap()
        await self.store.subscriptions.save(updated)
        logger.info("Subscription %s resumed; next pickup %s", updated.id, updated.next_pickup_date)
        return updated

    async def cancel(self, shop: str, subscription_id: str) -> SubscriptionRecord:
        sub = await self._load(shop, subscription_id)
        updated = lifecycle.cancel(sub, self.clock.now()).unwrap()

        if self.provider is not None:
            try:
                await self.provider.cancel_contract(sub.external_contract_id)
            except Exception as e:
                logger.warning("Contract cancel failed for %s: %s", sub.external_contract_id, e)

        await self.store.subscriptions.save(updated)
        logger.info("Subscription %s cancelled", updated.id)
        return updated

    async def skip_next(self, shop: str, subscription_id: str) -> SubscriptionRecord:
        sub = await self._load(shop, subscription_id)
        updated = lifecycle.skip_next(sub, self.clock.tz, self.policy).unwrap()
        await self.store.subscriptions.save(updated)
        logger.info(
            "Subscription %s skipped %s; next pickup %s",
            updated.id, sub.next_pickup_date, updated.next_pickup_date,
        )
        return updated

    async def update_billing_lead_hours(
        self, shop: str, subscription_id: str, hours: int,
    ) -> SubscriptionRecord:
        sub = await self._load(shop, subscription_id)
        updated = lifecycle.change_lead_hours(sub, hours, self.clock.tz, self.policy).unwrap()
        await self.store.subscriptions.save(updated)
        logger.info("Subscription %s billing lead set to %dh", updated.id, hours)
        return updated

    async def update_admin_notes(
        self, shop: str, subscription_id: str, notes: str | None,
    ) -> SubscriptionRecord:
        sub = await self._load(shop, subscription_id)
        updated = replace(sub, admin_notes=notes or None)
        await self.store.subscriptions.save(updated)
        return updated
