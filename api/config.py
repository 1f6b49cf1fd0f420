"""Service configuration from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://pickup:pickup@db:5432/pickup"
    LOG_LEVEL: str = "INFO"

    # Business calendar
    SHOP_TIMEZONE: str = "America/Los_Angeles"

    # Billing
    DEFAULT_BILLING_LEAD_HOURS: int = 84
    MIN_BILLING_LEAD_HOURS: int = 1
    MAX_BILLING_LEAD_HOURS: int = 168
    MAX_BILLING_FAILURES: int = 3
    BILLING_PENDING_TIMEOUT_HOURS: int = 24

    # Housekeeping
    AUDIT_RETENTION_DAYS: int = 30
    AVAILABILITY_CACHE_TTL_SECONDS: int = 300

    # Integrations
    CRON_SECRET: str = ""
    SHOPIFY_API_VERSION: str = "2025-01"
    HTTP_TIMEOUT_SECONDS: float = 10.0
    CALENDAR_SYNC_WEBHOOK_URL: str = ""

    class Config:
        env_file = ".env"
        extra = "allow"


settings = Settings()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return settings
