"""Merchant admin API — subscription queries and lifecycle actions."""

import logging

from fastapi import APIRouter, Depends

from domain.entities import SubscriptionStatus as DomainStatus
from domain.entities import CustomerSnapshot, Frequency as DomainFrequency
from repositories.base import Store
from routers.deps import (
    get_billing_provider, get_clock, get_events, get_policy, get_provider_factory, get_store,
)
from schemas import (
    AdminNotesUpdate, BillingAttemptLogResponse, BillingOutcomeResponse, LeadHoursUpdate,
    OneTimeRescheduleRequest, PauseRequest, PermanentRescheduleRequest, PickupResponse,
    SubscriptionCreate, SubscriptionDetailResponse, SubscriptionResponse,
    SubscriptionStatsResponse, SubscriptionStatus,
)
from services.billing import BillingOrchestrator
from services.billing_dates import BillingPolicy
from services.clock import BusinessClock
from services.pickup_events import PickupEvents
from services.reschedule import RescheduleService
from services.shopify_billing import BillingProvider
from services.subscriptions import SubscriptionService
from services.sweep import ProviderFactory

logger = logging.getLogger(__name__)

router = APIRouter()


def _service(
    store: Store = Depends(get_store),
    clock: BusinessClock = Depends(get_clock),
    policy: BillingPolicy = Depends(get_policy),
) -> SubscriptionService:
    return SubscriptionService(store, clock, policy=policy)


def _rescheduler(
    store: Store = Depends(get_store),
    clock: BusinessClock = Depends(get_clock),
    policy: BillingPolicy = Depends(get_policy),
    events: PickupEvents = Depends(get_events),
) -> RescheduleService:
    return RescheduleService(store, clock, policy, events)


# ── Queries ────────────────────────────────────────────────

@router.get("", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    shop: str,
    status: SubscriptionStatus | None = None,
    service: SubscriptionService = Depends(_service),
):
    """List a shop's subscriptions, optionally filtered by status."""
    subs = await service.list_subscriptions(shop, DomainStatus(status.value) if status else None)
    return [SubscriptionResponse.from_record(s) for s in subs]


@router.get("/stats", response_model=SubscriptionStatsResponse)
async def subscription_stats(shop: str, service: SubscriptionService = Depends(_service)):
    stats = await service.get_stats(shop)
    return SubscriptionStatsResponse(**stats.__dict__)


@router.get("/upcoming-billings", response_model=list[SubscriptionResponse])
async def upcoming_billings(
    shop: str,
    days_ahead: int = 7,
    service: SubscriptionService = Depends(_service),
):
    """ACTIVE subscriptions whose billing falls within the next `days_ahead` days."""
    subs = await service.get_upcoming_billings(shop, days_ahead)
    return [SubscriptionResponse.from_record(s) for s in subs]


@router.get("/failed-billings", response_model=list[SubscriptionDetailResponse])
async def failed_billings(shop: str, service: SubscriptionService = Depends(_service)):
    """Subscriptions whose last billing failed, with their latest attempts."""
    details = await service.get_failed_billings(shop)
    return [
        SubscriptionDetailResponse(
            subscription=SubscriptionResponse.from_record(d.subscription),
            recent_attempts=[BillingAttemptLogResponse.from_attempt(a) for a in d.recent_attempts],
        )
        for d in details
    ]


@router.get("/{subscription_id}", response_model=SubscriptionDetailResponse)
async def get_subscription(
    shop: str, subscription_id: str, service: SubscriptionService = Depends(_service),
):
    detail = await service.get_subscription(shop, subscription_id)
    return SubscriptionDetailResponse(
        subscription=SubscriptionResponse.from_record(detail.subscription),
        recent_attempts=[BillingAttemptLogResponse.from_attempt(a) for a in detail.recent_attempts],
        recent_pickups=[PickupResponse.from_pickup(p) for p in detail.recent_pickups],
    )


# ── Creation ───────────────────────────────────────────────

@router.post("", response_model=SubscriptionResponse, status_code=201)
async def create_subscription(
    shop: str, data: SubscriptionCreate, service: SubscriptionService = Depends(_service),
):
    """Register the subscription behind a newly created contract."""
    sub = await service.create_subscription(
        shop,
        contract_id=data.contract_id,
        customer=CustomerSnapshot(
            customer_id=data.customer_id,
            name=data.customer_name,
            email=data.customer_email,
            phone=data.customer_phone,
        ),
        frequency=DomainFrequency(data.frequency.value),
        preferred_day=data.preferred_day,
        preferred_time_slot=data.preferred_time_slot,
        billing_lead_hours=data.billing_lead_hours,
    )
    return SubscriptionResponse.from_record(sub)


# ── Lifecycle actions ──────────────────────────────────────

@router.post("/{subscription_id}/pause", response_model=SubscriptionResponse)
async def pause_subscription(
    shop: str,
    subscription_id: str,
    data: PauseRequest,
    service: SubscriptionService = Depends(_service),
):
    sub = await service.pause(shop, subscription_id, data.reason, data.paused_until)
    return SubscriptionResponse.from_record(sub)


@router.post("/{subscription_id}/resume", response_model=SubscriptionResponse)
async def resume_subscription(
    shop: str, subscription_id: str, service: SubscriptionService = Depends(_service),
):
    sub = await service.resume(shop, subscription_id)
    return SubscriptionResponse.from_record(sub)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    shop: str,
    subscription_id: str,
    store: Store = Depends(get_store),
    clock: BusinessClock = Depends(get_clock),
    policy: BillingPolicy = Depends(get_policy),
    factory: ProviderFactory = Depends(get_provider_factory),
):
    """Cancel locally; the contract cancel on Shopify is best-effort."""
    try:
        provider = await factory(shop)
    except LookupError:
        logger.warning("No access token for %s; cancelling locally only", shop)
        provider = None
    service = SubscriptionService(store, clock, provider=provider, policy=policy)
    sub = await service.cancel(shop, subscription_id)
    return SubscriptionResponse.from_record(sub)


@router.post("/{subscription_id}/skip", response_model=SubscriptionResponse)
async def skip_next_pickup(
    shop: str, subscription_id: str, service: SubscriptionService = Depends(_service),
):
    sub = await service.skip_next(shop, subscription_id)
    return SubscriptionResponse.from_record(sub)


@router.post("/{subscription_id}/retry-billing", response_model=BillingOutcomeResponse)
async def retry_billing(
    shop: str,
    subscription_id: str,
    store: Store = Depends(get_store),
    clock: BusinessClock = Depends(get_clock),
    policy: BillingPolicy = Depends(get_policy),
    events: PickupEvents = Depends(get_events),
    provider: BillingProvider = Depends(get_billing_provider),
):
    """Re-activate a subscription paused by billing failures and bill it now."""
    orchestrator = BillingOrchestrator(store, provider, clock, policy, events)
    outcome = await orchestrator.retry_billing(shop, subscription_id)
    return BillingOutcomeResponse(subscription_id=subscription_id, outcome=outcome.value)


@router.patch("/{subscription_id}/billing-lead-hours", response_model=SubscriptionResponse)
async def update_billing_lead_hours(
    shop: str,
    subscription_id: str,
    data: LeadHoursUpdate,
    service: SubscriptionService = Depends(_service),
):
    sub = await service.update_billing_lead_hours(shop, subscription_id, data.billing_lead_hours)
    return SubscriptionResponse.from_record(sub)


@router.patch("/{subscription_id}/notes", response_model=SubscriptionResponse)
async def update_admin_notes(
    shop: str,
    subscription_id: str,
    data: AdminNotesUpdate,
    service: SubscriptionService = Depends(_service),
):
    sub = await service.update_admin_notes(shop, subscription_id, data.admin_notes)
    return SubscriptionResponse.from_record(sub)


# ── Rescheduling ───────────────────────────────────────────

@router.post("/{subscription_id}/reschedule/one-time", response_model=SubscriptionResponse)
async def one_time_reschedule(
    shop: str,
    subscription_id: str,
    data: OneTimeRescheduleRequest,
    rescheduler: RescheduleService = Depends(_rescheduler),
):
    """Move only the next pickup."""
    sub = await rescheduler.one_time_reschedule(
        shop, subscription_id, data.new_pickup_date, data.new_time_slot,
        reason=data.reason, rescheduled_by=data.rescheduled_by,
    )
    return SubscriptionResponse.from_record(sub)


@router.delete("/{subscription_id}/reschedule/one-time", response_model=SubscriptionResponse)
async def clear_one_time_reschedule(
    shop: str,
    subscription_id: str,
    rescheduler: RescheduleService = Depends(_rescheduler),
):
    sub = await rescheduler.clear_one_time_reschedule(shop, subscription_id)
    return SubscriptionResponse.from_record(sub)


@router.post("/{subscription_id}/reschedule/permanent", response_model=SubscriptionResponse)
async def permanent_reschedule(
    shop: str,
    subscription_id: str,
    data: PermanentRescheduleRequest,
    rescheduler: RescheduleService = Depends(_rescheduler),
):
    """Change the preferred weekday and slot for all future pickups."""
    sub = await rescheduler.permanent_reschedule(
        shop, subscription_id, data.new_preferred_day, data.new_time_slot,
        reason=data.reason, rescheduled_by=data.rescheduled_by,
    )
    return SubscriptionResponse.from_record(sub)
