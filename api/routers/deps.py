"""Request-scoped dependencies shared by the routers."""

from fastapi import Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from models.shop_session import ShopSession
from repositories.base import Store
from repositories.sql import SqlAlchemyStore
from services.billing_dates import BillingPolicy
from services.clock import BusinessClock
from services.pickup_events import PickupEvents, get_pickup_events
from services.shopify_billing import BillingProvider, ShopifyBillingClient
from services.sweep import ProviderFactory


async def get_store(db: AsyncSession = Depends(get_db)) -> Store:
    return SqlAlchemyStore(db)


def get_clock() -> BusinessClock:
    return BusinessClock()


def get_policy() -> BillingPolicy:
    return BillingPolicy.from_settings()


def get_events() -> PickupEvents:
    return get_pickup_events()


async def get_provider_factory(db: AsyncSession = Depends(get_db)) -> ProviderFactory:
    """Builds a Shopify client per shop from its stored offline token."""

    async def provider_for_shop(shop: str) -> BillingProvider:
        result = await db.execute(select(ShopSession).where(ShopSession.shop == shop))
        session = result.scalar_one_or_none()
        if session is None:
            raise LookupError(f"No access token stored for {shop}")
        return ShopifyBillingClient(shop, session.access_token)

    return provider_for_shop


async def get_billing_provider(
    shop: str,
    factory: ProviderFactory = Depends(get_provider_factory),
) -> BillingProvider:
    try:
        return await factory(shop)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
