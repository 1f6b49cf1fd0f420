"""BillingAttemptLog ORM model — one row per charge attempt, never deleted."""

import uuid
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, Enum as PgEnum, Index
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base


class BillingAttemptLog(Base):
    __tablename__ = "billing_attempt_logs"
    __table_args__ = (
        Index("ix_billing_attempt_cycle", "subscription_id", "billing_cycle"),
        Index("ix_billing_attempt_external", "shop", "external_attempt_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    subscription_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("subscriptions.id"), nullable=False)
    billing_cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        PgEnum("PENDING", "SUCCESS", "FAILED", name="billing_status"),
        default="PENDING",
    )
    external_attempt_id: Mapped[str | None] = mapped_column(String(255))
    external_order_id: Mapped[str | None] = mapped_column(String(255))
    error_code: Mapped[str | None] = mapped_column(String(100))
    error_message: Mapped[str | None] = mapped_column(Text)
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
