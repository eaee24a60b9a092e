"""
FastAPI application factory.

* Registers routes for quotes, rides, drivers and admin.
* Starts / stops the background offer sweeper via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridecore.api.middleware import limiter
from ridecore.api.routes import admin, drivers, quotes, rides
from ridecore.config import settings
from ridecore.infrastructure.redis_client import close_redis
from ridecore.workers import offer_sweeper as _sweeper

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the offer sweeper on startup; stop it and close Redis on shutdown."""
    await _sweeper.start_sweeper_loop()
    yield
    await _sweeper.stop_sweeper_loop()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride-hailing Fare & Assignment API",
        description=(
            "Quotes itemised fares, lets passengers negotiate the price, "
            "offers rides to one driver at a time and tracks each ride "
            "from booking to completion or cancellation."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(quotes.router, prefix="/api/v1")
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
