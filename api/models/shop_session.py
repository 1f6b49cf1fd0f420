"""ShopSession ORM model — offline Admin API access token per shop."""

import uuid
from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from db.database import Base


class ShopSession(Base):
    __tablename__ = "shop_sessions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    access_token: Mapped[str] = mapped_column(String(255), nullable=False)
    scope: Mapped[str | None] = mapped_column(String(1024))
    installed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
