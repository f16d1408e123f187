"""
FastAPI application factory.

* Registers routes for trip requests, trips, drivers and admin.
* Starts / stops the background expiry reaper via lifespan events.
* Renders ``AppError`` subclasses as ``{"detail", "code", "details"}``.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.auth import build_identity_provider
from src.api.middleware import limiter
from src.api.routes import admin, drivers, system, trip_requests, trips
from src.config import settings
from src.domain.errors import AppError
from src.infrastructure.redis_client import close_redis
from src.infrastructure.routing import build_oracle
from src.workers import reaper as _reaper

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry reaper on startup; stop it and close Redis on shutdown."""
    await _reaper.start_reaper_loop()
    yield
    await _reaper.stop_reaper_loop()
    await close_redis()


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info(
            "%s %s rejected (%s): %s",
            request.method,
            request.url.path,
            exc.code,
            exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    app = FastAPI(
        title="Taxi Line Dispatch API",
        description=(
            "Prices trips, broadcasts requests to online drivers, grants "
            "each request to exactly one driver, and walks the trip through "
            "its lifecycle.  Unanswered requests are expired by a background "
            "reaper so no driver is left stuck."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Collaborators resolved once, at startup
    app.state.identity_provider = build_identity_provider()
    app.state.oracle = build_oracle()

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(AppError, app_error_handler)

    # Routers
    app.include_router(system.router, prefix="/api/v1")
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(trip_requests.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
