"""Repository interfaces. Every query is scoped to a shop."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime

from domain.entities import (
    BillingAttempt, Pickup, SubscriptionRecord, SubscriptionStatus,
)
from services.availability import AvailabilityConfig


class ISubscriptionRepository(ABC):

    @abstractmethod
    async def get(self, shop: str, subscription_id: str) -> SubscriptionRecord | None:
        pass

    @abstractmethod
    async def get_by_contract(self, shop: str, contract_id: str) -> SubscriptionRecord | None:
        pass

    @abstractmethod
    async def list_for_shop(
        self, shop: str, status: SubscriptionStatus | None = None,
    ) -> list[SubscriptionRecord]:
        pass

    @abstractmethod
    async def list_due_for_billing(
        self, shop: str, now: datetime, max_failures: int,
    ) -> list[SubscriptionRecord]:
        """ACTIVE, billing instant <= now, failures below the threshold."""

    @abstractmethod
    async def list_due_for_pickup(self, shop: str, today: date) -> list[SubscriptionRecord]:
        """ACTIVE with next pickup date <= today."""

    @abstractmethod
    async def list_due_for_resume(self, shop: str, today: date) -> list[SubscriptionRecord]:
        """PAUSED with paused_until <= today."""

    @abstractmethod
    async def list_billing_between(
        self, shop: str, start: datetime, end: datetime,
    ) -> list[SubscriptionRecord]:
        """ACTIVE with start <= billing instant <= end, soonest first."""

    @abstractmethod
    async def list_failed_billing(self, shop: str) -> list[SubscriptionRecord]:
        pass

    @abstractmethod
    async def list_open_shops(self) -> list[str]:
        """Shops with at least one ACTIVE or PAUSED subscription."""

    @abstractmethod
    async def add(self, subscription: SubscriptionRecord) -> SubscriptionRecord:
        pass

    @abstractmethod
    async def save(self, subscription: SubscriptionRecord) -> SubscriptionRecord:
        pass


class IBillingAttemptRepository(ABC):

    @abstractmethod
    async def list_for_cycle(self, subscription_id: str, cycle: int) -> list[BillingAttempt]:
        pass

    @abstractmethod
    async def get_by_external_id(self, shop: str, external_attempt_id: str) -> BillingAttempt | None:
        pass

    @abstractmethod
    async def list_recent(self, subscription_id: str, limit: int = 5) -> list[BillingAttempt]:
        pass

    @abstractmethod
    async def add(self, attempt: BillingAttempt) -> BillingAttempt:
        """Insert; raises DuplicateAttemptError when the idempotency key is taken."""

    @abstractmethod
    async def save(self, attempt: BillingAttempt) -> BillingAttempt:
        pass


class IPickupRepository(ABC):

    @abstractmethod
    async def find_for_subscription_date(
        self, subscription_id: str, pickup_date: date,
    ) -> Pickup | None:
        """A non-cancelled pickup for this subscription on this date."""

    @abstractmethod
    async def latest_scheduled(self, subscription_id: str) -> Pickup | None:
        """The SCHEDULED pickup with the latest pickup date."""

    @abstractmethod
    async def list_recent(self, subscription_id: str, limit: int = 5) -> list[Pickup]:
        pass

    @abstractmethod
    async def add(self, pickup: Pickup) -> Pickup:
        pass

    @abstractmethod
    async def save(self, pickup: Pickup) -> Pickup:
        pass


class IWebhookEventRepository(ABC):

    @abstractmethod
    async def record(self, shop: str, topic: str, external_id: str, received_at: datetime) -> bool:
        """Store the event; False when it was already recorded."""

    @abstractmethod
    async def forget(self, shop: str, topic: str, external_id: str) -> None:
        """Drop a recorded event so a redelivery is processed again."""

    @abstractmethod
    async def purge_older_than(self, shop: str, cutoff: datetime) -> int:
        pass


class IAvailabilityConfigRepository(ABC):

    @abstractmethod
    async def load(self, shop: str) -> AvailabilityConfig:
        """The shop's configuration, or defaults when it has none."""


@dataclass
class Store:
    subscriptions: ISubscriptionRepository
    attempts: IBillingAttemptRepository
    pickups: IPickupRepository
    webhook_events: IWebhookEventRepository
    availability: IAvailabilityConfigRepository

    async def rollback(self) -> None:
        """Discard a failed unit of work so the next one starts clean. No-op without a session."""
