"""Subscription ORM model — recurring pickup plan with its billing schedule."""

import uuid
from datetime import date, datetime
from sqlalchemy import (
    String, Integer, Numeric, Date, DateTime, Text, Enum as PgEnum, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("shop", "external_contract_id", name="uq_subscription_contract"),
        Index("ix_subscription_billing_due", "shop", "status", "next_billing_date"),
        Index("ix_subscription_pickup_due", "shop", "status", "next_pickup_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    external_contract_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Customer snapshot
    customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(255))
    customer_email: Mapped[str | None] = mapped_column(String(255))
    customer_phone: Mapped[str | None] = mapped_column(String(50))

    # Plan
    frequency: Mapped[str] = mapped_column(
        PgEnum("WEEKLY", "BIWEEKLY", "TRIWEEKLY", name="subscription_frequency"),
        nullable=False,
    )
    discount_percent: Mapped[float] = mapped_column(Numeric(5, 2), default=0)
    preferred_day: Mapped[int] = mapped_column(Integer, nullable=False)
    preferred_time_slot: Mapped[str] = mapped_column(String(50), nullable=False)
    preferred_time_slot_start_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        PgEnum("ACTIVE", "PAUSED", "CANCELLED", name="subscription_status"),
        default="ACTIVE",
    )
    pause_reason: Mapped[str | None] = mapped_column(Text)
    paused_until: Mapped[date | None] = mapped_column(Date)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Schedule
    next_pickup_date: Mapped[date | None] = mapped_column(Date)
    next_billing_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    billing_lead_hours: Mapped[int] = mapped_column(Integer, default=84)

    # Billing state
    billing_cycle_count: Mapped[int] = mapped_column(Integer, default=0)
    billing_failure_count: Mapped[int] = mapped_column(Integer, default=0)
    billing_failure_reason: Mapped[str | None] = mapped_column(Text)
    last_billing_status: Mapped[str | None] = mapped_column(
        PgEnum("PENDING", "SUCCESS", "FAILED", name="billing_status"),
    )
    last_billing_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_billing_attempt_id: Mapped[str | None] = mapped_column(String(255))

    # One-time override
    override_pickup_date: Mapped[date | None] = mapped_column(Date)
    override_time_slot: Mapped[str | None] = mapped_column(String(50))
    override_reason: Mapped[str | None] = mapped_column(Text)
    override_by: Mapped[str | None] = mapped_column(String(255))
    override_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    admin_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow,
    )
