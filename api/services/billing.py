"""
Billing Attempt Orchestrator — charges due subscriptions exactly once per cycle.

Rules:
  - Cycle N+1 is billed only after cycle N closed with a SUCCESS
  - A PENDING attempt row is written BEFORE the provider is called
  - Idempotency key: "{subscription_id}-cycle-{cycle}-attempt-{n}", unique in storage
  - A SUCCESS row for the cycle means no further provider calls for it
  - A recent PENDING row means the attempt is in flight; a stale one is
    re-submitted with the same key (the provider dedupes)
  - Provider errors mark the attempt FAILED and count toward auto-pause
  - One subscription's failure never stops the rest of the batch
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from domain.entities import (
    BillingAttempt, BillingStatus, SubscriptionRecord, SubscriptionStatus,
)
from domain.errors import (
    BillingProviderError, DuplicateAttemptError, NotFoundError, TransientIOError,
)
from repositories.base import Store
from services import lifecycle
from services.billing_dates import BillingPolicy
from services.clock import BusinessClock, elapsed
from services.pickup_events import PickupEvents
from services.pickups import materialize_pickup
from services.shopify_billing import BillingProvider

logger = logging.getLogger(__name__)


class BillingOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"
    ALREADY_BILLED = "ALREADY_BILLED"
    IN_FLIGHT = "IN_FLIGHT"
    SKIPPED = "SKIPPED"


@dataclass
class BillingRunSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    pending: int = 0
    skipped: int = 0
    errors: int = 0

    def record(self, outcome: BillingOutcome) -> None:
        self.processed += 1
        if outcome == BillingOutcome.SUCCESS:
            self.succeeded += 1
        elif outcome == BillingOutcome.FAILED:
            self.failed += 1
        elif outcome == BillingOutcome.PENDING:
            self.pending += 1
        else:
            self.skipped += 1


@dataclass
class BillingConfirmation:
    """An asynchronous result from the provider (webhook)."""
    external_attempt_id: str
    contract_id: str
    success: bool
    order_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None


def idempotency_key(subscription_id: str, cycle: int, attempt_number: int) -> str:
    return f"{subscription_id}-cycle-{cycle}-attempt-{attempt_number}"


class BillingOrchestrator:

    def __init__(
        self,
        store: Store,
        provider: BillingProvider | None,
        clock: BusinessClock,
        policy: BillingPolicy | None = None,
        pickup_events: PickupEvents | None = None,
    ):
        self.store = store
        self.provider = provider
        self.clock = clock
        self.policy = policy or BillingPolicy.from_settings()
        self.pickup_events = pickup_events or PickupEvents()

    # ── Batch ──────────────────────────────────────────────

    async def process_due_billings(self, shop: str) -> BillingRunSummary:
        """Attempt billing for every ACTIVE subscription of `shop` whose billing instant has passed."""
        summary = BillingRunSummary()
        due = await self.store.subscriptions.list_due_for_billing(
            shop, self.clock.now(), self.policy.max_failures,
        )

        for sub in due:
            try:
                outcome = await self.process_single_billing(sub)
            except Exception:
                logger.exception("Billing crashed for subscription %s (%s)", sub.id, shop)
                await self.store.rollback()
                summary.errors += 1
                continue
            summary.record(outcome)

        logger.info(
            "Billing run for %s: processed=%d succeeded=%d failed=%d pending=%d skipped=%d errors=%d",
            shop, summary.processed, summary.succeeded, summary.failed,
            summary.pending, summary.skipped, summary.errors,
        )
        return summary

    # ── Single attempt ─────────────────────────────────────

    async def process_single_billing(self, sub: SubscriptionRecord) -> BillingOutcome:
        if sub.status != SubscriptionStatus.ACTIVE:
            return BillingOutcome.SKIPPED
        if self.provider is None:
            raise RuntimeError("No billing provider configured")

        now = self.clock.now()
        cycle = sub.billing_cycle_count + 1
        attempts = await self.store.attempts.list_for_cycle(sub.id, cycle)

        succeeded = next((a for a in attempts if a.status == BillingStatus.SUCCESS), None)
        if succeeded is not None:
            logger.info("Cycle %d of subscription %s already billed", cycle, sub.id)
            await self._reconcile_billed_cycle(sub, succeeded)
            return BillingOutcome.ALREADY_BILLED

        pending = [a for a in attempts if a.status == BillingStatus.PENDING]
        if pending:
            attempt = max(pending, key=lambda a: a.attempted_at)
            if elapsed(now, attempt.attempted_at) < timedelta(hours=self.policy.pending_timeout_hours):
                logger.info(
                    "Cycle %d of subscription %s in flight (attempt %s)", cycle, sub.id, attempt.id,
                )
                return BillingOutcome.IN_FLIGHT
            logger.warning(
                "Re-submitting stale pending attempt %s for subscription %s", attempt.idempotency_key, sub.id,
            )
            attempt.attempted_at = now
            await self.store.attempts.save(attempt)
        else:
            attempt = BillingAttempt(
                shop=sub.shop,
                subscription_id=sub.id,
                billing_cycle=cycle,
                idempotency_key=idempotency_key(sub.id, cycle, len(attempts) + 1),
                status=BillingStatus.PENDING,
                attempted_at=now,
            )
            try:
                await self.store.attempts.add(attempt)
            except DuplicateAttemptError:
                logger.info("Attempt %s already claimed by another worker", attempt.idempotency_key)
                return BillingOutcome.IN_FLIGHT

        logger.info("Billing attempt %s created for %s", attempt.idempotency_key, sub.shop)

        try:
            response = await self.provider.create_billing_attempt(
                sub.external_contract_id, attempt.idempotency_key, now,
            )
        except TransientIOError as e:
            logger.warning("Billing provider unreachable for %s: %s", attempt.idempotency_key, e.message)
            await self.handle_billing_failure(sub, attempt, e.code, e.message)
            return BillingOutcome.FAILED
        except BillingProviderError as e:
            logger.error("Billing provider error for %s: %s", attempt.idempotency_key, e.message)
            await self.handle_billing_failure(sub, attempt, e.code, e.message)
            return BillingOutcome.FAILED
        except Exception as e:
            logger.exception("Unexpected billing error for %s", attempt.idempotency_key)
            await self.handle_billing_failure(sub, attempt, "API_ERROR", str(e))
            return BillingOutcome.FAILED

        attempt.external_attempt_id = response.attempt_id
        attempt.external_order_id = response.order_id

        if response.ready:
            attempt.status = BillingStatus.SUCCESS
            await self.store.attempts.save(attempt)
            logger.info("Billing attempt %s succeeded", attempt.idempotency_key)
            await self.handle_billing_success(sub, attempt)
            return BillingOutcome.SUCCESS

        if response.error_code:
            await self.handle_billing_failure(
                sub, attempt, response.error_code, f"Billing attempt failed: {response.error_code}",
            )
            return BillingOutcome.FAILED

        await self.store.attempts.save(attempt)
        logger.info(
            "Billing attempt %s pending provider confirmation (%s)",
            attempt.idempotency_key, response.attempt_id,
        )
        return BillingOutcome.PENDING

    # ── Outcome handlers ───────────────────────────────────

    async def handle_billing_success(
        self, sub: SubscriptionRecord, attempt: BillingAttempt,
    ) -> SubscriptionRecord:
        """Materialize the billed occurrence, then advance the subscription one cycle."""
        current = await self.store.subscriptions.get(sub.shop, sub.id) or sub
        if current.status == SubscriptionStatus.CANCELLED:
            logger.warning(
                "Subscription %s was cancelled while cycle %d was billing; not advancing",
                current.id, attempt.billing_cycle,
            )
            return current
        if current.billing_cycle_count >= attempt.billing_cycle:
            return current

        await materialize_pickup(
            self.store, current, current.next_pickup_date, current.effective_time_slot,
            self.pickup_events, order_id=attempt.external_order_id,
        )

        updated = lifecycle.record_billing_success(
            current,
            now=self.clock.now(),
            tz=self.clock.tz,
            attempt_id=attempt.external_attempt_id or attempt.id,
            policy=self.policy,
        ).unwrap()
        await self.store.subscriptions.save(updated)
        logger.info(
            "Subscription %s billed for cycle %d; next pickup %s",
            updated.id, attempt.billing_cycle, updated.next_pickup_date,
        )
        return updated

    async def handle_billing_failure(
        self,
        sub: SubscriptionRecord,
        attempt: BillingAttempt,
        error_code: str,
        error_message: str | None,
    ) -> SubscriptionRecord:
        attempt.status = BillingStatus.FAILED
        attempt.error_code = error_code
        attempt.error_message = error_message
        await self.store.attempts.save(attempt)

        current = await self.store.subscriptions.get(sub.shop, sub.id) or sub
        if current.status == SubscriptionStatus.CANCELLED:
            return current

        updated = lifecycle.record_billing_failure(
            current,
            error_code=error_code,
            error_message=error_message,
            now=self.clock.now(),
            attempt_id=attempt.external_attempt_id or attempt.id,
            policy=self.policy,
        ).unwrap()
        await self.store.subscriptions.save(updated)

        if updated.pause_reason != current.pause_reason:
            logger.warning("Subscription %s auto-paused: %s", updated.id, updated.pause_reason)
        else:
            logger.warning(
                "Billing failed for subscription %s (%d/%d): %s",
                updated.id, updated.billing_failure_count, self.policy.max_failures, error_code,
            )
        return updated

    async def _reconcile_billed_cycle(self, sub: SubscriptionRecord, attempt: BillingAttempt) -> None:
        """A SUCCESS row exists but the subscription never advanced past it."""
        current = await self.store.subscriptions.get(sub.shop, sub.id) or sub
        if current.billing_cycle_count < attempt.billing_cycle:
            logger.warning(
                "Subscription %s has a billed cycle %d it never advanced past; reconciling",
                current.id, attempt.billing_cycle,
            )
            await self.handle_billing_success(current, attempt)

    # ── Asynchronous confirmation ──────────────────────────

    async def apply_billing_confirmation(
        self, shop: str, confirmation: BillingConfirmation,
    ) -> BillingOutcome:
        """
        Apply a provider-side result delivered after the synchronous call returned.

        Repeated deliveries are no-ops. A success for an attempt the synchronous
        path marked FAILED is still honoured: the customer was charged.
        """
        sub = await self.store.subscriptions.get_by_contract(shop, confirmation.contract_id)
        if sub is None:
            logger.warning(
                "Billing confirmation for unknown contract %s on %s", confirmation.contract_id, shop,
            )
            return BillingOutcome.SKIPPED

        attempt = await self._attempt_for_confirmation(sub, confirmation)
        if attempt is None:
            return BillingOutcome.ALREADY_BILLED

        if confirmation.success:
            if attempt.status == BillingStatus.SUCCESS:
                return BillingOutcome.ALREADY_BILLED
            siblings = await self.store.attempts.list_for_cycle(sub.id, attempt.billing_cycle)
            if any(a.status == BillingStatus.SUCCESS and a.id != attempt.id for a in siblings):
                return BillingOutcome.ALREADY_BILLED

            attempt.status = BillingStatus.SUCCESS
            attempt.external_order_id = confirmation.order_id or attempt.external_order_id
            await self.store.attempts.save(attempt)
            logger.info("Billing attempt %s confirmed successful", confirmation.external_attempt_id)
            await self.handle_billing_success(sub, attempt)
            return BillingOutcome.SUCCESS

        if attempt.is_terminal:
            return BillingOutcome.ALREADY_BILLED
        await self.handle_billing_failure(
            sub, attempt, confirmation.error_code or "UNKNOWN", confirmation.error_message,
        )
        return BillingOutcome.FAILED

    async def _attempt_for_confirmation(
        self, sub: SubscriptionRecord, confirmation: BillingConfirmation,
    ) -> BillingAttempt | None:
        attempt = await self.store.attempts.get_by_external_id(sub.shop, confirmation.external_attempt_id)
        if attempt is not None:
            return attempt

        cycle = sub.billing_cycle_count + 1
        unmatched = [
            a for a in await self.store.attempts.list_for_cycle(sub.id, cycle)
            if a.status == BillingStatus.PENDING and a.external_attempt_id is None
        ]
        if unmatched:
            attempt = max(unmatched, key=lambda a: a.attempted_at)
            attempt.external_attempt_id = confirmation.external_attempt_id
            await self.store.attempts.save(attempt)
            return attempt

        prefix = "webhook-success" if confirmation.success else "webhook"
        attempt = BillingAttempt(
            shop=sub.shop,
            subscription_id=sub.id,
            billing_cycle=cycle,
            idempotency_key=f"{prefix}-{confirmation.external_attempt_id}",
            status=BillingStatus.PENDING,
            external_attempt_id=confirmation.external_attempt_id,
            attempted_at=self.clock.now(),
        )
        try:
            await self.store.attempts.add(attempt)
        except DuplicateAttemptError:
            logger.info("Confirmation %s already recorded", confirmation.external_attempt_id)
            return None
        return attempt

    # ── Manual retry ───────────────────────────────────────

    async def retry_billing(self, shop: str, subscription_id: str) -> BillingOutcome:
        """Re-activate a subscription paused by billing failures and bill it once."""
        sub = await self.store.subscriptions.get(shop, subscription_id)
        if sub is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")

        ready = lifecycle.reset_for_retry(sub, self.clock.today(), self.clock.tz, self.policy).unwrap()
        if ready.status != sub.status:
            await self.store.subscriptions.save(ready)
            logger.info("Subscription %s re-activated for billing retry", ready.id)
        return await self.process_single_billing(ready)
