"""
FastAPI application factory.

* Registers routes for rides, customers and admin.
* Builds the ``RideLifecycleManager`` (Stripe gateway + per-ride locks) and
  starts / stops the expiry worker via lifespan events.
* Renders ``RideError`` failures as ``{"detail", "kind"}`` JSON.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ride_service.api.errors import check_error_mapping, ride_error_handler
from ride_service.api.middleware import limiter
from ride_service.api.routes import admin, customers, rides
from ride_service.config import settings
from ride_service.domain.errors import RideError
from ride_service.infrastructure.database import async_session_factory
from ride_service.infrastructure.locks import KeyedLock, RedisRideLocks
from ride_service.infrastructure.payments import StripePaymentGateway
from ride_service.infrastructure.redis_client import get_redis
from ride_service.services.lifecycle import RideLifecycleManager
from ride_service.workers import expiry as _expiry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the manager and start the expiry worker; stop it on shutdown.

    Redis is only used with ``lock_backend="redis"``.  With in-memory locks
    the process is assumed to be alone, so the expiry sweep runs unguarded.
    """
    redis = None
    if settings.lock_backend == "redis":
        redis = await get_redis()
        locks = RedisRideLocks(redis, ttl_seconds=settings.lock_ttl_seconds)
    else:
        locks = KeyedLock()
    gateway = StripePaymentGateway(async_session_factory, settings.stripe_api_key)
    app.state.manager = RideLifecycleManager.from_settings(
        settings, async_session_factory, gateway, locks
    )
    logger.info("Ride lifecycle manager ready (locks=%s)", settings.lock_backend)

    await _expiry.start_expiry_loop(app.state.manager, async_session_factory, redis)
    yield
    await _expiry.stop_expiry_loop()
    if redis is not None:
        await redis.aclose()


def create_app() -> FastAPI:
    check_error_mapping()

    app = FastAPI(
        title="Ride Lifecycle API",
        description=(
            "Moves rides through request, acceptance, pickup and trip, and "
            "charges the customer's default payment method before a ride "
            "starts."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RideError, ride_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(customers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
