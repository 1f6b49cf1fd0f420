"""
Pickup event hook — tells an external calendar sync when pickups appear or move.

Failures are logged but NEVER raise exceptions: a calendar outage must not
roll back a pickup or a billing cycle.
"""

import logging

import httpx

from config import settings
from domain.entities import Pickup

logger = logging.getLogger(__name__)


class PickupEvents:
    """No-op hook; subclasses deliver the events somewhere."""

    async def _deliver(self, event: str, pickup: Pickup) -> None:
        return None

    async def _publish(self, event: str, pickup: Pickup) -> bool:
        try:
            await self._deliver(event, pickup)
            return True
        except Exception as e:
            logger.warning(
                "Pickup event %s failed: pickup=%s, order=%s, error=%s",
                event, pickup.id, pickup.external_order_id, str(e),
            )
            return False

    async def pickup_created(self, pickup: Pickup) -> bool:
        return await self._publish("pickup.created", pickup)

    async def pickup_rescheduled(self, pickup: Pickup) -> bool:
        return await self._publish("pickup.rescheduled", pickup)


class WebhookPickupEvents(PickupEvents):
    """POSTs each event as JSON to a calendar sync webhook."""

    def __init__(self, url: str):
        self.url = url

    async def _deliver(self, event, pickup):
        payload = {
            "event": event,
            "shop": pickup.shop,
            "pickup_id": pickup.id,
            "order_number": pickup.order_number,
            "pickup_date": pickup.pickup_date.isoformat(),
            "pickup_time_slot": pickup.pickup_time_slot,
            "calendar_event_id": pickup.calendar_event_id,
            "customer_name": pickup.customer.name,
        }
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            resp = await client.post(self.url, json=payload)
            resp.raise_for_status()
        logger.info("Pickup event %s sent: order=%s", event, pickup.order_number)


def get_pickup_events() -> PickupEvents:
    if settings.CALENDAR_SYNC_WEBHOOK_URL:
        return WebhookPickupEvents(settings.CALENDAR_SYNC_WEBHOOK_URL)
    return PickupEvents()
