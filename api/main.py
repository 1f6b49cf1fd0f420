"""
Pickup Subscriptions — FastAPI Backend
Recurring pickup scheduling and billing for Shopify shops
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from db.database import engine
from exceptions import install_exception_handlers
from routers import availability, cron, subscriptions, webhooks
from services.cache import ConfigCache

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    app.state.availability_cache = ConfigCache(settings.AVAILABILITY_CACHE_TTL_SECONDS)
    logger.info("Pickup subscriptions API starting (timezone %s)", settings.SHOP_TIMEZONE)
    yield
    await engine.dispose()
    logger.info("Pickup subscriptions API shut down")


app = FastAPI(
    title="Pickup Subscriptions API",
    description="Subscription scheduling and billing engine for in-store pickups",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ───────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_exception_handlers(app)

# ── Routers ────────────────────────────────────────────────
app.include_router(
    subscriptions.router, prefix="/api/shops/{shop}/subscriptions", tags=["Subscriptions"],
)
app.include_router(availability.router, prefix="/api/availability", tags=["Availability"])
app.include_router(cron.router, prefix="/api/cron", tags=["Cron"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "Pickup Subscriptions API"}


@app.get("/health/db")
async def health_db():
    """Verify the database connection."""
    from sqlalchemy import text
    try:
        async with engine.connect() as conn:
            row = (await conn.execute(text("SELECT current_database()"))).first()
        return {"status": "ok", "database": row[0]}
    except Exception as e:
        return {"status": "error", "detail": str(e)}
