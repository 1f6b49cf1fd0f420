"""PickupSchedule ORM model — a concrete pickup for one order or subscription occurrence."""

import uuid
from datetime import date, datetime
from sqlalchemy import String, Date, DateTime, Text, ForeignKey, Enum as PgEnum, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base


class PickupSchedule(Base):
    __tablename__ = "pickup_schedules"
    __table_args__ = (
        UniqueConstraint("shop", "external_order_id", name="uq_pickup_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    external_order_id: Mapped[str] = mapped_column(String(255), nullable=False)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False)

    customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(255))
    customer_email: Mapped[str | None] = mapped_column(String(255))
    customer_phone: Mapped[str | None] = mapped_column(String(50))

    pickup_date: Mapped[date] = mapped_column(Date, nullable=False)
    pickup_time_slot: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        PgEnum("SCHEDULED", "READY", "PICKED_UP", "CANCELLED", "NO_SHOW", name="pickup_status"),
        default="SCHEDULED",
    )
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("subscriptions.id"), index=True)
    notes: Mapped[str | None] = mapped_column(Text)
    calendar_event_id: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
