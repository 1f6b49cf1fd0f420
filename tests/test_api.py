"""HTTP surface tests: routers wired to the in-memory store."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from datetime import datetime, time
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from conftest import SHOP
from config import Settings, get_settings
from main import app
from routers.availability import get_config_cache
from routers.deps import get_clock, get_events, get_provider_factory, get_store
from services.availability import AvailabilityConfig, SlotDefinition
from services.billing import BillingOrchestrator
from services.cache import ConfigCache

TZ = ZoneInfo("America/Los_Angeles")
BASE = f"/api/shops/{SHOP}/subscriptions"
CRON_HEADERS = {"Authorization": "Bearer s3cret"}


@pytest.fixture
def client(store, clock, provider, events):
    async def provider_for_shop(shop):
        return provider

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_events] = lambda: events
    app.dependency_overrides[get_provider_factory] = lambda: provider_for_shop
    app.dependency_overrides[get_settings] = lambda: Settings(CRON_SECRET="s3cret")
    app.dependency_overrides[get_config_cache] = lambda: ConfigCache(300)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, contract="gid://shopify/SubscriptionContract/1", **overrides):
    body = {
        "contract_id": contract,
        "customer_id": "gid://shopify/Customer/1",
        "customer_name": "Dana Reyes",
        "frequency": "WEEKLY",
        "preferred_day": 2,
        "preferred_time_slot": "9:00 AM - 11:00 AM",
    }
    body.update(overrides)
    return client.post(BASE, json=body)


def test_create_and_fetch_subscription(client):
    resp = _create(client)
    assert resp.status_code == 201
    sub = resp.json()
    assert sub["status"] == "ACTIVE"
    assert sub["next_pickup_date"] == "2026-03-03"
    assert sub["preferred_day_name"] == "Tuesday"
    assert sub["discount_percent"] == 10.0

    detail = client.get(f"{BASE}/{sub['id']}").json()
    assert detail["subscription"]["id"] == sub["id"]
    assert detail["recent_attempts"] == []

    listed = client.get(BASE, params={"status": "ACTIVE"}).json()
    assert [s["id"] for s in listed] == [sub["id"]]


def test_domain_errors_map_to_status_codes(client):
    sub = _create(client).json()

    assert client.get(f"{BASE}/missing").status_code == 404

    assert client.post(f"{BASE}/{sub['id']}/pause", json={"reason": "Vacation"}).status_code == 200
    again = client.post(f"{BASE}/{sub['id']}/pause", json={})
    assert again.status_code == 409
    assert again.json() == {"detail": "Subscription is already paused", "code": "InvalidStateError"}

    bad_lead = client.patch(f"{BASE}/{sub['id']}/billing-lead-hours", json={"billing_lead_hours": 500})
    assert bad_lead.status_code == 400


def test_one_time_reschedule_in_the_past_conflicts(client):
    sub = _create(client).json()
    resp = client.post(f"{BASE}/{sub['id']}/reschedule/one-time", json={
        "new_pickup_date": "2026-02-28",
        "new_time_slot": "9:00 AM - 11:00 AM",
    })
    assert resp.status_code == 409
    assert resp.json()["code"] == "SchedulingConflictError"

    ok = client.post(f"{BASE}/{sub['id']}/reschedule/one-time", json={
        "new_pickup_date": "2026-03-12",
        "new_time_slot": "2:00 PM - 4:00 PM",
        "rescheduled_by": "staff@shop",
    })
    assert ok.status_code == 200
    assert ok.json()["one_time_override"]["pickup_date"] == "2026-03-12"

    cleared = client.delete(f"{BASE}/{sub['id']}/reschedule/one-time")
    assert cleared.json()["one_time_override"] is None


def test_cancel_uses_provider(client, provider):
    sub = _create(client).json()
    resp = client.post(f"{BASE}/{sub['id']}/cancel")
    assert resp.json()["status"] == "CANCELLED"
    assert provider.cancelled == [sub["external_contract_id"]]


def test_cron_requires_secret(client):
    assert client.post("/api/cron/process-subscriptions").status_code == 401
    assert client.post(
        "/api/cron/process-subscriptions", headers={"Authorization": "Bearer wrong"},
    ).status_code == 401

    app.dependency_overrides[get_settings] = lambda: Settings(CRON_SECRET="")
    assert client.post("/api/cron/process-subscriptions", headers=CRON_HEADERS).status_code == 503


def test_cron_sweep_bills_due_subscriptions(client, clock):
    sub = _create(client).json()
    clock.set(datetime(2026, 2, 28, 8, 0, tzinfo=TZ))

    resp = client.post("/api/cron/process-subscriptions", headers=CRON_HEADERS)
    assert resp.status_code == 200
    report = resp.json()["shops"][SHOP]
    assert report["billing_succeeded"] == 1
    assert report["errors"] == []

    detail = client.get(f"{BASE}/{sub['id']}").json()
    assert detail["subscription"]["billing_cycle_count"] == 1
    assert detail["subscription"]["next_pickup_date"] == "2026-03-10"
    assert detail["recent_pickups"][0]["pickup_date"] == "2026-03-03"


def test_billing_webhook_applied_once(client):
    sub = _create(client).json()
    payload = {
        "id": 501,
        "admin_graphql_api_id": "gid://shopify/SubscriptionBillingAttempt/501",
        "admin_graphql_api_subscription_contract_id": sub["external_contract_id"],
        "admin_graphql_api_order_id": "gid://shopify/Order/501",
        "ready": True,
    }
    headers = {"X-Shopify-Shop-Domain": SHOP}

    first = client.post("/api/webhooks/billing-attempts/success", json=payload, headers=headers)
    assert first.json() == {"status": "SUCCESS"}
    second = client.post("/api/webhooks/billing-attempts/success", json=payload, headers=headers)
    assert second.json() == {"status": "duplicate"}

    detail = client.get(f"{BASE}/{sub['id']}").json()
    assert detail["subscription"]["billing_cycle_count"] == 1


def test_billing_webhook_redelivered_after_failed_apply(client, store, monkeypatch):
    """A delivery that blew up is not remembered, so Shopify's retry is applied."""
    sub = _create(client).json()
    payload = {
        "id": 502,
        "admin_graphql_api_id": "gid://shopify/SubscriptionBillingAttempt/502",
        "admin_graphql_api_subscription_contract_id": sub["external_contract_id"],
        "admin_graphql_api_order_id": "gid://shopify/Order/502",
        "ready": True,
    }
    headers = {"X-Shopify-Shop-Domain": SHOP}

    original = BillingOrchestrator.apply_billing_confirmation
    calls = []

    async def flaky(self, shop, confirmation):
        calls.append(confirmation.external_attempt_id)
        if len(calls) == 1:
            raise RuntimeError("connection reset")
        return await original(self, shop, confirmation)

    monkeypatch.setattr(BillingOrchestrator, "apply_billing_confirmation", flaky)

    with pytest.raises(RuntimeError):
        client.post("/api/webhooks/billing-attempts/success", json=payload, headers=headers)
    assert len(store.webhook_events) == 0

    retry = client.post("/api/webhooks/billing-attempts/success", json=payload, headers=headers)
    assert retry.json() == {"status": "SUCCESS"}
    assert len(calls) == 2

    detail = client.get(f"{BASE}/{sub['id']}").json()
    assert detail["subscription"]["billing_cycle_count"] == 1


def test_availability_lists_bookable_dates(client, store):
    store.availability.configs[SHOP] = AvailabilityConfig(slots=(
        SlotDefinition(label="9:00 AM - 11:00 AM", start=time(9), end=time(11)),
    ))
    resp = client.get("/api/availability", params={"shop": SHOP})
    assert resp.status_code == 200
    dates = resp.json()["dates"]
    assert dates[0]["date"] == "2026-03-03"
    assert dates[0]["day_name"] == "Tuesday"
