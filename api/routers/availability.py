"""Storefront availability read — bookable pickup dates and slots for a shop."""

from fastapi import APIRouter, Depends, Request

from repositories.base import Store
from routers.deps import get_clock, get_store
from schemas import AvailabilityResponse, AvailableDateResponse, SlotResponse
from services.availability import get_available_dates
from services.cache import ConfigCache
from services.clock import BusinessClock, day_name

router = APIRouter()


def get_config_cache(request: Request) -> ConfigCache:
    return request.app.state.availability_cache


@router.get("", response_model=AvailabilityResponse)
async def available_pickup_dates(
    shop: str,
    store: Store = Depends(get_store),
    clock: BusinessClock = Depends(get_clock),
    cache: ConfigCache = Depends(get_config_cache),
):
    """Dates (and their open slots) a customer can book right now."""
    config = await cache.get_or_load(shop, lambda: store.availability.load(shop))
    dates = get_available_dates(config, clock.now())
    return AvailabilityResponse(
        shop=shop,
        dates=[
            AvailableDateResponse(
                date=d.date,
                day_of_week=d.day_of_week,
                day_name=day_name(d.day_of_week),
                time_slots=[
                    SlotResponse(
                        label=s.label,
                        start_time=s.start.strftime("%H:%M"),
                        end_time=s.end.strftime("%H:%M"),
                    )
                    for s in d.slots
                ],
            )
            for d in dates
        ],
    )
