"""
FastAPI application factory.

* Registers routes for rides, chat, customers, drivers, admin and enums.
* Starts / stops the cleanup sweeper via lifespan events.
* Applies rate-limiting middleware and the global error handlers.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from dispatch.api.errors import register_exception_handlers
from dispatch.api.middleware import limiter
from dispatch.api.routes import admin, chat, customers, drivers, enums, rides
from dispatch.config import settings
from dispatch.infrastructure.redis_client import close_redis
from dispatch.workers import sweeper as _sweeper

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sweeper on startup; stop on shutdown."""
    if settings.sweeper_enabled:
        await _sweeper.start_sweeper()
    else:
        logger.info("Sweeper disabled; run it from cron instead")
    yield
    if settings.sweeper_enabled:
        await _sweeper.stop_sweeper()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Dispatch API",
        description=(
            "Ride and service requests, scheduling, driver assignment and "
            "per-ride chat.  Driver assignment is race-safe; a background "
            "sweeper cancels stuck and expired rides."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_exception_handlers(app)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(chat.router, prefix="/api/v1")
    app.include_router(customers.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(enums.router, prefix="/api/v1")

    return app
