"""Scheduled job trigger — runs the subscription sweep across all shops."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException

from config import Settings, get_settings
from repositories.base import Store
from routers.deps import get_clock, get_events, get_policy, get_provider_factory, get_store
from schemas import ShopSweepResponse, SweepResponse
from services.billing_dates import BillingPolicy
from services.clock import BusinessClock
from services.pickup_events import PickupEvents
from services.sweep import ProviderFactory, SubscriptionSweep

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_cron_secret(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.CRON_SECRET:
        raise HTTPException(status_code=503, detail="CRON_SECRET is not configured")
    if authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post(
    "/process-subscriptions",
    response_model=SweepResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def process_subscriptions(
    store: Store = Depends(get_store),
    clock: BusinessClock = Depends(get_clock),
    policy: BillingPolicy = Depends(get_policy),
    events: PickupEvents = Depends(get_events),
    factory: ProviderFactory = Depends(get_provider_factory),
):
    """Resume, bill, materialize pickups and purge audit records for every open shop."""
    sweep = SubscriptionSweep(store, factory, clock, policy, events)
    reports = await sweep.run_all()
    logger.info("Cron sweep finished for %d shops", len(reports))
    return SweepResponse(
        ran_at=clock.now(),
        shops={
            shop: ShopSweepResponse(
                resumed=r.resumed,
                billing_processed=r.billing.processed,
                billing_succeeded=r.billing.succeeded,
                billing_failed=r.billing.failed,
                billing_pending=r.billing.pending,
                pickups_materialized=r.pickups_materialized,
                audit_records_purged=r.audit_records_purged,
                errors=r.errors,
            )
            for shop, r in reports.items()
        },
    )
