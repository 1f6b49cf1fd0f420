"""Shop availability configuration ORM models — prep time, pickup days, slots, blackouts."""

import uuid
from datetime import date, time
from sqlalchemy import String, Integer, Boolean, Date, Time, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base


class PrepTimeConfig(Base):
    __tablename__ = "prep_time_configs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    cutoff_time: Mapped[time] = mapped_column(Time, default=time(12, 0))
    lead_time_before: Mapped[int] = mapped_column(Integer, default=3)
    lead_time_after: Mapped[int] = mapped_column(Integer, default=4)
    max_booking_days: Mapped[int] = mapped_column(Integer, default=14)
    custom_by_day: Mapped[bool] = mapped_column(Boolean, default=False)
    # {"0": {"before": 2, "after": 3}, ...}
    day_overrides: Mapped[dict] = mapped_column(JSON, default=dict)


class PickupDayConfig(Base):
    __tablename__ = "pickup_day_configs"
    __table_args__ = (UniqueConstraint("shop", "day_of_week", name="uq_pickup_day"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)


class TimeSlot(Base):
    __tablename__ = "time_slots"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(50), nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class BlackoutDate(Base):
    __tablename__ = "blackout_dates"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    blackout_date: Mapped[date | None] = mapped_column("date", Date)
    date_end: Mapped[date | None] = mapped_column(Date)
    day_of_week: Mapped[int | None] = mapped_column(Integer)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    start_time: Mapped[time | None] = mapped_column(Time)
    end_time: Mapped[time | None] = mapped_column(Time)
    reason: Mapped[str | None] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
