"""In-memory repositories with the same uniqueness rules as the database."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from domain.entities import (
    BillingAttempt, BillingStatus, Pickup, PickupStatus, SubscriptionRecord, SubscriptionStatus,
)
from domain.errors import DuplicateAttemptError, DuplicateRecordError
from repositories.base import (
    IAvailabilityConfigRepository, IBillingAttemptRepository, IPickupRepository,
    ISubscriptionRepository, IWebhookEventRepository, Store,
)
from services.availability import AvailabilityConfig

_OPEN_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED)


class InMemorySubscriptionRepository(ISubscriptionRepository):

    def __init__(self):
        self._items: dict[str, SubscriptionRecord] = {}

    def _for_shop(self, shop: str) -> list[SubscriptionRecord]:
        return [replace(s) for s in self._items.values() if s.shop == shop]

    async def get(self, shop, subscription_id):
        sub = self._items.get(subscription_id)
        if sub is None or sub.shop != shop:
            return None
        return replace(sub)

    async def get_by_contract(self, shop, contract_id):
        for sub in self._for_shop(shop):
            if sub.external_contract_id == contract_id:
                return sub
        return None

    async def list_for_shop(self, shop, status=None):
        subs = self._for_shop(shop)
        if status is not None:
            subs = [s for s in subs if s.status == status]
        return subs

    async def list_due_for_billing(self, shop, now, max_failures):
        due = [
            s for s in self._for_shop(shop)
            if s.status == SubscriptionStatus.ACTIVE
            and s.next_billing_date <= now
            and s.billing_failure_count < max_failures
        ]
        return sorted(due, key=lambda s: s.next_billing_date)

    async def list_due_for_pickup(self, shop, today):
        return [
            s for s in self._for_shop(shop)
            if s.status == SubscriptionStatus.ACTIVE and s.next_pickup_date <= today
        ]

    async def list_due_for_resume(self, shop, today):
        return [
            s for s in self._for_shop(shop)
            if s.status == SubscriptionStatus.PAUSED
            and s.paused_until is not None
            and s.paused_until <= today
        ]

    async def list_billing_between(self, shop, start, end):
        subs = [
            s for s in self._for_shop(shop)
            if s.status == SubscriptionStatus.ACTIVE and start <= s.next_billing_date <= end
        ]
        return sorted(subs, key=lambda s: s.next_billing_date)

    async def list_failed_billing(self, shop):
        return [
            s for s in self._for_shop(shop)
            if s.last_billing_status == BillingStatus.FAILED and s.billing_failure_count > 0
        ]

    async def list_open_shops(self):
        return sorted({s.shop for s in self._items.values() if s.status in _OPEN_STATUSES})

    async def add(self, subscription):
        if any(
            s.shop == subscription.shop and s.external_contract_id == subscription.external_contract_id
            for s in self._items.values()
        ):
            raise DuplicateRecordError(
                f"Subscription for contract {subscription.external_contract_id} already exists"
            )
        self._items[subscription.id] = replace(subscription)
        return subscription

    async def save(self, subscription):
        self._items[subscription.id] = replace(subscription)
        return subscription


class InMemoryBillingAttemptRepository(IBillingAttemptRepository):

    def __init__(self):
        self._items: dict[str, BillingAttempt] = {}

    async def list_for_cycle(self, subscription_id, cycle):
        return [
            replace(a) for a in self._items.values()
            if a.subscription_id == subscription_id and a.billing_cycle == cycle
        ]

    async def get_by_external_id(self, shop, external_attempt_id):
        for a in self._items.values():
            if a.shop == shop and a.external_attempt_id == external_attempt_id:
                return replace(a)
        return None

    async def list_recent(self, subscription_id, limit=5):
        attempts = [replace(a) for a in self._items.values() if a.subscription_id == subscription_id]
        attempts.sort(key=lambda a: a.attempted_at.timestamp() if a.attempted_at else 0.0, reverse=True)
        return attempts[:limit]

    async def add(self, attempt):
        if any(a.idempotency_key == attempt.idempotency_key for a in self._items.values()):
            raise DuplicateAttemptError(f"Idempotency key {attempt.idempotency_key} already used")
        self._items[attempt.id] = replace(attempt)
        return attempt

    async def save(self, attempt):
        self._items[attempt.id] = replace(attempt)
        return attempt

    def all(self) -> list[BillingAttempt]:
        return [replace(a) for a in self._items.values()]


class InMemoryPickupRepository(IPickupRepository):

    def __init__(self):
        self._items: dict[str, Pickup] = {}

    async def find_for_subscription_date(self, subscription_id, pickup_date):
        for p in self._items.values():
            if (
                p.subscription_id == subscription_id
                and p.pickup_date == pickup_date
                and p.status != PickupStatus.CANCELLED
            ):
                return replace(p)
        return None

    async def latest_scheduled(self, subscription_id):
        scheduled = [
            p for p in self._items.values()
            if p.subscription_id == subscription_id and p.status == PickupStatus.SCHEDULED
        ]
        if not scheduled:
            return None
        return replace(max(scheduled, key=lambda p: p.pickup_date))

    async def list_recent(self, subscription_id, limit=5):
        pickups = [replace(p) for p in self._items.values() if p.subscription_id == subscription_id]
        pickups.sort(key=lambda p: p.pickup_date, reverse=True)
        return pickups[:limit]

    async def add(self, pickup):
        if any(
            p.shop == pickup.shop and p.external_order_id == pickup.external_order_id
            for p in self._items.values()
        ):
            raise DuplicateRecordError(f"Pickup for order {pickup.external_order_id} already exists")
        self._items[pickup.id] = replace(pickup)
        return pickup

    async def save(self, pickup):
        self._items[pickup.id] = replace(pickup)
        return pickup

    def all(self) -> list[Pickup]:
        return [replace(p) for p in self._items.values()]


class InMemoryWebhookEventRepository(IWebhookEventRepository):

    def __init__(self):
        self._events: dict[tuple[str, str, str], datetime] = {}

    async def record(self, shop, topic, external_id, received_at):
        key = (shop, topic, external_id)
        if key in self._events:
            return False
        self._events[key] = received_at
        return True

    async def forget(self, shop, topic, external_id):
        self._events.pop((shop, topic, external_id), None)

    async def purge_older_than(self, shop, cutoff):
        stale = [k for k, at in self._events.items() if k[0] == shop and at < cutoff]
        for key in stale:
            del self._events[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._events)


class InMemoryAvailabilityConfigRepository(IAvailabilityConfigRepository):

    def __init__(self, configs: dict[str, AvailabilityConfig] | None = None):
        self.configs = dict(configs or {})
        self.loads = 0

    async def load(self, shop):
        self.loads += 1
        return self.configs.get(shop, AvailabilityConfig())


class InMemoryStore(Store):
    """A Store wired to fresh in-memory repositories."""

    def __init__(self, configs: dict[str, AvailabilityConfig] | None = None):
        super().__init__(
            subscriptions=InMemorySubscriptionRepository(),
            attempts=InMemoryBillingAttemptRepository(),
            pickups=InMemoryPickupRepository(),
            webhook_events=InMemoryWebhookEventRepository(),
            availability=InMemoryAvailabilityConfigRepository(configs),
        )
