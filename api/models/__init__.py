from models.subscription import Subscription
from models.billing_attempt import BillingAttemptLog
from models.pickup_schedule import PickupSchedule
from models.availability import PrepTimeConfig, PickupDayConfig, TimeSlot, BlackoutDate
from models.webhook_event import WebhookEvent
from models.shop_session import ShopSession

__all__ = [
    "Subscription", "BillingAttemptLog", "PickupSchedule",
    "PrepTimeConfig", "PickupDayConfig", "TimeSlot", "BlackoutDate",
    "WebhookEvent", "ShopSession",
]
