"""Shared fixtures: frozen business clock, in-memory store, fake billing provider."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from domain.entities import CustomerSnapshot, Frequency
from repositories.memory import InMemoryStore
from services.billing_dates import BillingPolicy
from services.clock import BusinessClock
from services.lifecycle import new_subscription
from services.pickup_events import PickupEvents
from services.shopify_billing import BillingAttemptResponse, BillingProvider

TZ = ZoneInfo("America/Los_Angeles")
SHOP = "pickup-test.myshopify.com"

# Friday 10:00 AM in the business zone
START = datetime(2026, 2, 27, 10, 0, tzinfo=TZ)


class SteppingClock(BusinessClock):
    """A business clock the test can move."""

    def __init__(self, instant: datetime):
        self.current = instant
        super().__init__(tz=TZ, now_fn=lambda: self.current)

    def set(self, instant: datetime) -> None:
        self.current = instant

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeBillingProvider(BillingProvider):
    """Replays queued responses (or raises queued exceptions); defaults to an immediate success."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls: list[tuple[str, str]] = []
        self.cancelled: list[str] = []
        self.cancel_error: Exception | None = None

    async def create_billing_attempt(self, contract_id, idempotency_key, origin_time):
        self.calls.append((contract_id, idempotency_key))
        response = self.responses.pop(0) if self.responses else None
        if isinstance(response, Exception):
            raise response
        if response is None:
            n = len(self.calls)
            response = BillingAttemptResponse(
                attempt_id=f"gid://shopify/SubscriptionBillingAttempt/{n}",
                ready=True,
                order_id=f"gid://shopify/Order/{n}",
            )
        return response

    async def cancel_contract(self, contract_id):
        if self.cancel_error is not None:
            raise self.cancel_error
        self.cancelled.append(contract_id)


class RecordingPickupEvents(PickupEvents):

    def __init__(self):
        self.delivered: list[tuple[str, str]] = []

    async def _deliver(self, event, pickup):
        self.delivered.append((event, pickup.id))


@pytest.fixture
def clock():
    return SteppingClock(START)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def provider():
    return FakeBillingProvider()


@pytest.fixture
def events():
    return RecordingPickupEvents()


@pytest.fixture
def policy():
    return BillingPolicy()


@pytest.fixture
def make_subscription(store, clock, policy):
    """Create and persist a subscription; returns an async factory."""

    async def _make(
        preferred_day: int = 2,
        time_slot: str = "9:00 AM - 11:00 AM",
        frequency: Frequency = Frequency.WEEKLY,
        lead_hours: int = 84,
        contract_id: str | None = None,
        shop: str = SHOP,
    ):
        sub = new_subscription(
            shop=shop,
            external_contract_id=contract_id or f"gid://shopify/SubscriptionContract/{len(store.subscriptions._items) + 1}",
            customer=CustomerSnapshot(customer_id="gid://shopify/Customer/1", name="Dana Reyes"),
            frequency=frequency,
            preferred_day=preferred_day,
            preferred_time_slot=time_slot,
            today=clock.today(),
            tz=TZ,
            billing_lead_hours=lead_hours,
            policy=policy,
        )
        await store.subscriptions.add(sub)
        return sub

    return _make
