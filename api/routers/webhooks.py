"""
Billing attempt webhooks — asynchronous results for attempts that returned pending.

Each delivery is recorded once per (shop, topic, attempt id); repeats are acknowledged
without being applied again. A delivery that fails to apply is forgotten so the
redelivery goes through. Signature verification happens upstream.
"""

import logging

from fastapi import APIRouter, Depends, Header

from repositories.base import Store
from routers.deps import get_clock, get_events, get_policy, get_store
from schemas import BillingAttemptWebhook
from services.billing import BillingConfirmation, BillingOrchestrator
from services.billing_dates import BillingPolicy
from services.clock import BusinessClock
from services.pickup_events import PickupEvents

logger = logging.getLogger(__name__)

router = APIRouter()

TOPIC_SUCCESS = "subscription_billing_attempts/success"
TOPIC_FAILURE = "subscription_billing_attempts/failure"


async def _handle(
    topic: str,
    shop: str,
    payload: BillingAttemptWebhook,
    store: Store,
    clock: BusinessClock,
    policy: BillingPolicy,
    events: PickupEvents,
) -> dict:
    if not await store.webhook_events.record(shop, topic, payload.admin_graphql_api_id, clock.now()):
        logger.info("Duplicate webhook %s for %s ignored", topic, payload.admin_graphql_api_id)
        return {"status": "duplicate"}

    orchestrator = BillingOrchestrator(store, None, clock, policy, events)
    try:
        outcome = await orchestrator.apply_billing_confirmation(shop, BillingConfirmation(
            external_attempt_id=payload.admin_graphql_api_id,
            contract_id=payload.admin_graphql_api_subscription_contract_id,
            success=topic == TOPIC_SUCCESS,
            order_id=payload.admin_graphql_api_order_id,
            error_code=payload.error_code,
            error_message=payload.error_message,
        ))
    except Exception:
        logger.exception("Webhook %s for %s failed; Shopify will redeliver", topic, payload.admin_graphql_api_id)
        await store.webhook_events.forget(shop, topic, payload.admin_graphql_api_id)
        raise
    logger.info("Webhook %s for %s applied: %s", topic, payload.admin_graphql_api_id, outcome.value)
    return {"status": outcome.value}


@router.post("/billing-attempts/success")
async def billing_attempt_success(
    payload: BillingAttemptWebhook,
    x_shopify_shop_domain: str = Header(...),
    store: Store = Depends(get_store),
    clock: BusinessClock = Depends(get_clock),
    policy: BillingPolicy = Depends(get_policy),
    events: PickupEvents = Depends(get_events),
):
    return await _handle(TOPIC_SUCCESS, x_shopify_shop_domain, payload, store, clock, policy, events)


@router.post("/billing-attempts/failure")
async def billing_attempt_failure(
    payload: BillingAttemptWebhook,
    x_shopify_shop_domain: str = Header(...),
    store: Store = Depends(get_store),
    clock: BusinessClock = Depends(get_clock),
    policy: BillingPolicy = Depends(get_policy),
    events: PickupEvents = Depends(get_events),
):
    return await _handle(TOPIC_FAILURE, x_shopify_shop_domain, payload, store, clock, policy, events)
