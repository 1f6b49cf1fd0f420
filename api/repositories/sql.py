"""SQLAlchemy-backed repositories. Each write commits; uniqueness violations become domain errors."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import delete, desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import (
    Active, BillingAttempt, BillingStatus, Cancelled, CustomerSnapshot, Frequency,
    OneTimeOverride, Paused, Pickup, PickupStatus, Schedule, SubscriptionRecord,
    SubscriptionStatus,
)
from domain.errors import DuplicateAttemptError, DuplicateRecordError
from models.availability import BlackoutDate, PickupDayConfig, PrepTimeConfig, TimeSlot
from models.billing_attempt import BillingAttemptLog
from models.pickup_schedule import PickupSchedule
from models.subscription import Subscription
from models.webhook_event import WebhookEvent
from repositories.base import (
    IAvailabilityConfigRepository, IBillingAttemptRepository, IPickupRepository,
    ISubscriptionRepository, IWebhookEventRepository, Store,
)
from services.availability import (
    DEFAULT_ENABLED_DAYS, AvailabilityConfig, Blackout, LeadTimeRule, SlotDefinition,
    generate_slot_label,
)
from services.lifecycle import DEFAULT_PAUSE_REASON


def _uuid(value: str | None) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


# ── Row ↔ entity mapping ───────────────────────────────────

def _to_subscription(row: Subscription) -> SubscriptionRecord:
    schedule = None
    if row.next_pickup_date is not None and row.next_billing_date is not None:
        schedule = Schedule(row.next_pickup_date, row.next_billing_date)

    if row.status == SubscriptionStatus.ACTIVE.value:
        if schedule is None:
            raise ValueError(f"Active subscription {row.id} has no schedule")
        state = Active(schedule)
    elif row.status == SubscriptionStatus.PAUSED.value:
        state = Paused(
            reason=row.pause_reason or DEFAULT_PAUSE_REASON,
            paused_until=row.paused_until,
            schedule=schedule,
        )
    else:
        state = Cancelled(cancelled_at=row.cancelled_at)

    override = None
    if row.override_pickup_date is not None and row.override_time_slot:
        override = OneTimeOverride(
            pickup_date=row.override_pickup_date,
            time_slot=row.override_time_slot,
            reason=row.override_reason,
            rescheduled_by=row.override_by,
            rescheduled_at=row.override_at or row.updated_at,
        )

    return SubscriptionRecord(
        id=str(row.id),
        shop=row.shop,
        external_contract_id=row.external_contract_id,
        customer=CustomerSnapshot(
            customer_id=row.customer_id,
            name=row.customer_name,
            email=row.customer_email,
            phone=row.customer_phone,
        ),
        frequency=Frequency(row.frequency),
        preferred_day=row.preferred_day,
        preferred_time_slot=row.preferred_time_slot,
        preferred_time_slot_start_minutes=row.preferred_time_slot_start_minutes,
        state=state,
        billing_lead_hours=row.billing_lead_hours,
        billing_cycle_count=row.billing_cycle_count,
        billing_failure_count=row.billing_failure_count,
        billing_failure_reason=row.billing_failure_reason,
        last_billing_status=BillingStatus(row.last_billing_status) if row.last_billing_status else None,
        last_billing_attempt_at=row.last_billing_attempt_at,
        last_billing_attempt_id=row.last_billing_attempt_id,
        one_time_override=override,
        admin_notes=row.admin_notes,
        created_at=row.created_at,
    )


def _apply_subscription(row: Subscription, sub: SubscriptionRecord) -> None:
    row.shop = sub.shop
    row.external_contract_id = sub.external_contract_id
    row.customer_id = sub.customer.customer_id
    row.customer_name = sub.customer.name
    row.customer_email = sub.customer.email
    row.customer_phone = sub.customer.phone
    row.frequency = sub.frequency.value
    row.discount_percent = sub.discount_percent
    row.preferred_day = sub.preferred_day
    row.preferred_time_slot = sub.preferred_time_slot
    row.preferred_time_slot_start_minutes = sub.preferred_time_slot_start_minutes

    row.status = sub.status.value
    row.pause_reason = sub.pause_reason
    row.paused_until = sub.paused_until
    row.cancelled_at = sub.state.cancelled_at if isinstance(sub.state, Cancelled) else None
    row.next_pickup_date = sub.next_pickup_date
    row.next_billing_date = sub.next_billing_date
    row.billing_lead_hours = sub.billing_lead_hours

    row.billing_cycle_count = sub.billing_cycle_count
    row.billing_failure_count = sub.billing_failure_count
    row.billing_failure_reason = sub.billing_failure_reason
    row.last_billing_status = sub.last_billing_status.value if sub.last_billing_status else None
    row.last_billing_attempt_at = sub.last_billing_attempt_at
    row.last_billing_attempt_id = sub.last_billing_attempt_id

    override = sub.one_time_override
    row.override_pickup_date = override.pickup_date if override else None
    row.override_time_slot = override.time_slot if override else None
    row.override_reason = override.reason if override else None
    row.override_by = override.rescheduled_by if override else None
    row.override_at = override.rescheduled_at if override else None

    row.admin_notes = sub.admin_notes


def _to_attempt(row: BillingAttemptLog) -> BillingAttempt:
    return BillingAttempt(
        id=str(row.id),
        shop=row.shop,
        subscription_id=str(row.subscription_id),
        billing_cycle=row.billing_cycle,
        idempotency_key=row.idempotency_key,
        status=BillingStatus(row.status),
        external_attempt_id=row.external_attempt_id,
        external_order_id=row.external_order_id,
        error_code=row.error_code,
        error_message=row.error_message,
        attempted_at=row.attempted_at,
    )


def _apply_attempt(row: BillingAttemptLog, attempt: BillingAttempt) -> None:
    row.shop = attempt.shop
    row.subscription_id = _uuid(attempt.subscription_id)
    row.billing_cycle = attempt.billing_cycle
    row.idempotency_key = attempt.idempotency_key
    row.status = attempt.status.value
    row.external_attempt_id = attempt.external_attempt_id
    row.external_order_id = attempt.external_order_id
    row.error_code = attempt.error_code
    row.error_message = attempt.error_message
    row.attempted_at = attempt.attempted_at


def _to_pickup(row: PickupSchedule) -> Pickup:
    return Pickup(
        id=str(row.id),
        shop=row.shop,
        external_order_id=row.external_order_id,
        order_number=row.order_number,
        customer=CustomerSnapshot(
            customer_id=row.customer_id,
            name=row.customer_name,
            email=row.customer_email,
            phone=row.customer_phone,
        ),
        pickup_date=row.pickup_date,
        pickup_time_slot=row.pickup_time_slot,
        status=PickupStatus(row.status),
        subscription_id=str(row.subscription_id) if row.subscription_id else None,
        notes=row.notes,
        calendar_event_id=row.calendar_event_id,
    )


def _apply_pickup(row: PickupSchedule, pickup: Pickup) -> None:
    row.shop = pickup.shop
    row.external_order_id = pickup.external_order_id
    row.order_number = pickup.order_number
    row.customer_id = pickup.customer.customer_id
    row.customer_name = pickup.customer.name
    row.customer_email = pickup.customer.email
    row.customer_phone = pickup.customer.phone
    row.pickup_date = pickup.pickup_date
    row.pickup_time_slot = pickup.pickup_time_slot
    row.status = pickup.status.value
    row.subscription_id = _uuid(pickup.subscription_id)
    row.notes = pickup.notes
    row.calendar_event_id = pickup.calendar_event_id


# ── Repositories ───────────────────────────────────────────

class SqlSubscriptionRepository(ISubscriptionRepository):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _all(self, stmt) -> list[SubscriptionRecord]:
        result = await self.db.execute(stmt)
        return [_to_subscription(row) for row in result.scalars().all()]

    async def get(self, shop, subscription_id):
        key = _uuid(subscription_id)
        if key is None:
            return None
        result = await self.db.execute(
            select(Subscription).where(Subscription.id == key, Subscription.shop == shop)
        )
        row = result.scalar_one_or_none()
        return _to_subscription(row) if row else None

    async def get_by_contract(self, shop, contract_id):
        result = await self.db.execute(
            select(Subscription).where(
                Subscription.shop == shop, Subscription.external_contract_id == contract_id,
            )
        )
        row = result.scalar_one_or_none()
        return _to_subscription(row) if row else None

    async def list_for_shop(self, shop, status=None):
        stmt = select(Subscription).where(Subscription.shop == shop)
        if status is not None:
            stmt = stmt.where(Subscription.status == status.value)
        return await self._all(stmt.order_by(desc(Subscription.created_at)))

    async def list_due_for_billing(self, shop, now, max_failures):
        return await self._all(
            select(Subscription)
            .where(
                Subscription.shop == shop,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.next_billing_date <= now,
                Subscription.billing_failure_count < max_failures,
            )
            .order_by(Subscription.next_billing_date)
        )

    async def list_due_for_pickup(self, shop, today: date):
        return await self._all(
            select(Subscription).where(
                Subscription.shop == shop,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.next_pickup_date <= today,
            )
        )

    async def list_due_for_resume(self, shop, today: date):
        return await self._all(
            select(Subscription).where(
                Subscription.shop == shop,
                Subscription.status == SubscriptionStatus.PAUSED.value,
                Subscription.paused_until.is_not(None),
                Subscription.paused_until <= today,
            )
        )

    async def list_billing_between(self, shop, start: datetime, end: datetime):
        return await self._all(
            select(Subscription)
            .where(
                Subscription.shop == shop,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.next_billing_date >= start,
                Subscription.next_billing_date <= end,
            )
            .order_by(Subscription.next_billing_date)
        )

    async def list_failed_billing(self, shop):
        return await self._all(
            select(Subscription)
            .where(
                Subscription.shop == shop,
                Subscription.last_billing_status == BillingStatus.FAILED.value,
                Subscription.billing_failure_count > 0,
            )
            .order_by(desc(Subscription.last_billing_attempt_at))
        )

    async def list_open_shops(self):
        result = await self.db.execute(
            select(Subscription.shop)
            .where(Subscription.status.in_([
                SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAUSED.value,
            ]))
            .distinct()
        )
        return sorted(result.scalars().all())

    async def add(self, subscription):
        row = Subscription(id=_uuid(subscription.id))
        _apply_subscription(row, subscription)
        if subscription.created_at is not None:
            row.created_at = subscription.created_at
        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateRecordError(
                f"Subscription for contract {subscription.external_contract_id} already exists"
            ) from e
        return subscription

    async def save(self, subscription):
        row = await self.db.get(Subscription, _uuid(subscription.id))
        if row is None:
            return await self.add(subscription)
        _apply_subscription(row, subscription)
        await self.db.commit()
        return subscription


class SqlBillingAttemptRepository(IBillingAttemptRepository):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_cycle(self, subscription_id, cycle):
        result = await self.db.execute(
            select(BillingAttemptLog).where(
                BillingAttemptLog.subscription_id == _uuid(subscription_id),
                BillingAttemptLog.billing_cycle == cycle,
            )
        )
        return [_to_attempt(row) for row in result.scalars().all()]

    async def get_by_external_id(self, shop, external_attempt_id):
        result = await self.db.execute(
            select(BillingAttemptLog).where(
                BillingAttemptLog.shop == shop,
                BillingAttemptLog.external_attempt_id == external_attempt_id,
            )
        )
        row = result.scalars().first()
        return _to_attempt(row) if row else None

    async def list_recent(self, subscription_id, limit=5):
        result = await self.db.execute(
            select(BillingAttemptLog)
            .where(BillingAttemptLog.subscription_id == _uuid(subscription_id))
            .order_by(desc(BillingAttemptLog.attempted_at))
            .limit(limit)
        )
        return [_to_attempt(row) for row in result.scalars().all()]

    async def add(self, attempt):
        row = BillingAttemptLog(id=_uuid(attempt.id))
        _apply_attempt(row, attempt)
        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateAttemptError(f"Idempotency key {attempt.idempotency_key} already used") from e
        return attempt

    async def save(self, attempt):
        row = await self.db.get(BillingAttemptLog, _uuid(attempt.id))
        if row is None:
            return await self.add(attempt)
        _apply_attempt(row, attempt)
        await self.db.commit()
        return attempt


class SqlPickupRepository(IPickupRepository):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_for_subscription_date(self, subscription_id, pickup_date):
        result = await self.db.execute(
            select(PickupSchedule).where(
                PickupSchedule.subscription_id == _uuid(subscription_id),
                PickupSchedule.pickup_date == pickup_date,
                PickupSchedule.status != PickupStatus.CANCELLED.value,
            )
        )
        row = result.scalars().first()
        return _to_pickup(row) if row else None

    async def latest_scheduled(self, subscription_id):
        result = await self.db.execute(
            select(PickupSchedule)
            .where(
                PickupSchedule.subscription_id == _uuid(subscription_id),
                PickupSchedule.status == PickupStatus.SCHEDULED.value,
            )
            .order_by(desc(PickupSchedule.pickup_date))
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _to_pickup(row) if row else None

    async def list_recent(self, subscription_id, limit=5):
        result = await self.db.execute(
            select(PickupSchedule)
            .where(PickupSchedule.subscription_id == _uuid(subscription_id))
            .order_by(desc(PickupSchedule.pickup_date))
            .limit(limit)
        )
        return [_to_pickup(row) for row in result.scalars().all()]

    async def add(self, pickup):
        row = PickupSchedule(id=_uuid(pickup.id))
        _apply_pickup(row, pickup)
        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateRecordError(f"Pickup for order {pickup.external_order_id} already exists") from e
        return pickup

    async def save(self, pickup):
        row = await self.db.get(PickupSchedule, _uuid(pickup.id))
        if row is None:
            return await self.add(pickup)
        _apply_pickup(row, pickup)
        await self.db.commit()
        return pickup


class SqlWebhookEventRepository(IWebhookEventRepository):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, shop, topic, external_id, received_at):
        self.db.add(WebhookEvent(shop=shop, topic=topic, external_id=external_id, processed_at=received_at))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return False
        return True

    async def forget(self, shop, topic, external_id):
        await self.db.rollback()
        await self.db.execute(
            delete(WebhookEvent).where(
                WebhookEvent.shop == shop,
                WebhookEvent.topic == topic,
                WebhookEvent.external_id == external_id,
            )
        )
        await self.db.commit()

    async def purge_older_than(self, shop, cutoff):
        result = await self.db.execute(
            delete(WebhookEvent).where(WebhookEvent.shop == shop, WebhookEvent.processed_at < cutoff)
        )
        await self.db.commit()
        return result.rowcount or 0


class SqlAvailabilityConfigRepository(IAvailabilityConfigRepository):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self, shop):
        prep = (await self.db.execute(
            select(PrepTimeConfig).where(PrepTimeConfig.shop == shop)
        )).scalar_one_or_none()
        days = (await self.db.execute(
            select(PickupDayConfig).where(PickupDayConfig.shop == shop)
        )).scalars().all()
        slots = (await self.db.execute(
            select(TimeSlot).where(TimeSlot.shop == shop)
        )).scalars().all()
        blackouts = (await self.db.execute(
            select(BlackoutDate).where(BlackoutDate.shop == shop, BlackoutDate.is_active.is_(True))
        )).scalars().all()

        lead = LeadTimeRule()
        if prep is not None:
            lead = LeadTimeRule(
                enabled=prep.is_enabled,
                cutoff_time=prep.cutoff_time,
                lead_before=prep.lead_time_before,
                lead_after=prep.lead_time_after,
                max_booking_days=prep.max_booking_days,
                custom_by_day=prep.custom_by_day,
                day_overrides={
                    int(dow): (values.get("before"), values.get("after"))
                    for dow, values in (prep.day_overrides or {}).items()
                },
            )

        enabled_days = DEFAULT_ENABLED_DAYS
        if days:
            enabled_days = frozenset(d.day_of_week for d in days if d.is_enabled)

        return AvailabilityConfig(
            enabled_days=enabled_days,
            lead=lead,
            slots=tuple(
                SlotDefinition(
                    id=str(s.id),
                    label=s.label or generate_slot_label(s.start_time, s.end_time),
                    start=s.start_time,
                    end=s.end_time,
                    day_of_week=s.day_of_week,
                    is_active=s.is_active,
                    sort_order=s.sort_order,
                )
                for s in slots
            ),
            blackouts=tuple(
                Blackout(
                    date=b.blackout_date,
                    date_end=b.date_end,
                    day_of_week=b.day_of_week,
                    is_recurring=b.is_recurring,
                    start_time=b.start_time,
                    end_time=b.end_time,
                    reason=b.reason,
                    is_active=b.is_active,
                )
                for b in blackouts
            ),
        )


class SqlAlchemyStore(Store):

    def __init__(self, db: AsyncSession):
        self.db = db
        super().__init__(
            subscriptions=SqlSubscriptionRepository(db),
            attempts=SqlBillingAttemptRepository(db),
            pickups=SqlPickupRepository(db),
            webhook_events=SqlWebhookEventRepository(db),
            availability=SqlAvailabilityConfigRepository(db),
        )

    async def rollback(self):
        await self.db.rollback()
