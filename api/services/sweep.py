"""
Sweep Driver — the periodic pass over every shop with open subscriptions.

Per shop, in order:
  1. Resume PAUSED subscriptions whose paused_until has arrived
  2. Bill ACTIVE subscriptions whose billing instant has passed
  3. Materialize pickups for ACTIVE subscriptions whose pickup date has arrived
  4. Purge webhook audit records past retention

Each shop and each step is isolated: a failure is logged and recorded in the
report, and the sweep moves on after the store rolls back the failed work.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta

from repositories.base import Store
from services import lifecycle
from services.billing import BillingOrchestrator, BillingRunSummary
from services.billing_dates import BillingPolicy
from services.clock import BusinessClock
from services.pickup_events import PickupEvents
from services.pickups import materialize_pickup
from services.shopify_billing import BillingProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str], Awaitable[BillingProvider]]


@dataclass
class ShopSweepReport:
    shop: str
    resumed: int = 0
    billing: BillingRunSummary = field(default_factory=BillingRunSummary)
    pickups_materialized: int = 0
    audit_records_purged: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class SubscriptionSweep:

    def __init__(
        self,
        store: Store,
        provider_for_shop: ProviderFactory,
        clock: BusinessClock,
        policy: BillingPolicy | None = None,
        pickup_events: PickupEvents | None = None,
    ):
        self.store = store
        self.provider_for_shop = provider_for_shop
        self.clock = clock
        self.policy = policy or BillingPolicy.from_settings()
        self.pickup_events = pickup_events or PickupEvents()

    # ── Steps ──────────────────────────────────────────────

    async def resume_due_subscriptions(self, shop: str) -> int:
        today = self.clock.today()
        resumed = 0
        for sub in await self.store.subscriptions.list_due_for_resume(shop, today):
            result = lifecycle.resume_if_due(sub, today, self.clock.tz, self.policy)
            if not result.ok:
                logger.warning("Auto-resume skipped for %s: %s", sub.id, result.error)
                continue
            await self.store.subscriptions.save(result.subscription)
            resumed += 1
            logger.info(
                "Subscription %s auto-resumed; next pickup %s",
                sub.id, result.subscription.next_pickup_date,
            )
        return resumed

    async def process_billing(self, shop: str) -> BillingRunSummary:
        provider = await self.provider_for_shop(shop)
        orchestrator = BillingOrchestrator(
            self.store, provider, self.clock, self.policy, self.pickup_events,
        )
        return await orchestrator.process_due_billings(shop)

    async def materialize_due_pickups(self, shop: str) -> int:
        """Create the pickup for each occurrence that has arrived and move to the next cycle."""
        today = self.clock.today()
        materialized = 0
        for sub in await self.store.subscriptions.list_due_for_pickup(shop, today):
            try:
                await materialize_pickup(
                    self.store, sub, sub.next_pickup_date, sub.effective_time_slot, self.pickup_events,
                )
                advanced = lifecycle.advance_after_pickup(sub, self.clock.tz, self.policy).unwrap()
                await self.store.subscriptions.save(advanced)
            except Exception:
                logger.exception("Pickup materialization failed for subscription %s", sub.id)
                await self.store.rollback()
                continue
            materialized += 1
        return materialized

    async def purge_stale_audit_records(self, shop: str) -> int:
        cutoff = self.clock.now() - timedelta(days=self.policy.audit_retention_days)
        return await self.store.webhook_events.purge_older_than(shop, cutoff)

    # ── Drivers ────────────────────────────────────────────

    async def run_sweep(self, shop: str) -> ShopSweepReport:
        report = ShopSweepReport(shop=shop)

        try:
            report.resumed = await self.resume_due_subscriptions(shop)
        except Exception as e:
            logger.exception("Resume step failed for %s", shop)
            await self.store.rollback()
            report.errors.append(f"resume: {e}")

        try:
            report.billing = await self.process_billing(shop)
        except Exception as e:
            logger.exception("Billing step failed for %s", shop)
            await self.store.rollback()
            report.errors.append(f"billing: {e}")

        try:
            report.pickups_materialized = await self.materialize_due_pickups(shop)
        except Exception as e:
            logger.exception("Pickup step failed for %s", shop)
            await self.store.rollback()
            report.errors.append(f"pickups: {e}")

        try:
            report.audit_records_purged = await self.purge_stale_audit_records(shop)
        except Exception as e:
            logger.exception("Audit purge failed for %s", shop)
            await self.store.rollback()
            report.errors.append(f"purge: {e}")

        logger.info(
            "Sweep for %s: resumed=%d billed=%d/%d pickups=%d purged=%d errors=%d",
            shop, report.resumed, report.billing.succeeded, report.billing.processed,
            report.pickups_materialized, report.audit_records_purged, len(report.errors),
        )
        return report

    async def run_all(self) -> dict[str, ShopSweepReport]:
        reports: dict[str, ShopSweepReport] = {}
        for shop in await self.store.subscriptions.list_open_shops():
            try:
                reports[shop] = await self.run_sweep(shop)
            except Exception as e:
                logger.exception("Sweep failed for %s", shop)
                await self.store.rollback()
                reports[shop] = ShopSweepReport(shop=shop, errors=[str(e)])
        return reports
