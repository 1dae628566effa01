"""
FastAPI application factory.

* Registers routes for fares, the passenger's ride session, rides and admin.
* Starts / stops the background surge refresher via lifespan events.
* Maps the ride-session error taxonomy to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridesync.api.dependencies import get_registry, get_store
from ridesync.api.middleware import limiter
from ridesync.api.routes import admin, drivers, fares, rides, session
from ridesync.domain.enums import ErrorKind
from ridesync.domain.errors import RateLimited, RideSyncError
from ridesync.workers import surge as _surge

logging.basicConfig(level=logging.INFO)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NO_ACTIVE_RIDE: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.INACTIVE: 422,
    ErrorKind.EXPIRED: 422,
    ErrorKind.LIMIT_REACHED: 422,
    ErrorKind.NOT_APPLICABLE: 422,
    ErrorKind.BELOW_MINIMUM: 422,
    ErrorKind.INVALID_COORDINATES: 422,
    ErrorKind.INCOMPLETE_BOOKING: 422,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.STORE_UNAVAILABLE: 503,
}


async def ride_error_handler(request: Request, exc: RideSyncError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(exc.kind, 400),
        content={"detail": exc.message, "kind": exc.kind.value},
        headers=headers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the surge refresher on startup; release sessions on shutdown."""
    registry = app.dependency_overrides.get(get_registry, get_registry)()
    await _surge.start_surge_loop(registry)
    yield
    await _surge.stop_surge_loop()
    registry.close()
    await app.dependency_overrides.get(get_store, get_store)().close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Session API",
        description=(
            "Fare quotes with time-of-day surge and promo codes, ride "
            "booking, and live ride / driver tracking mirrored from the "
            "document store."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RideSyncError, ride_error_handler)

    # Routers
    app.include_router(fares.router, prefix="/api/v1")
    app.include_router(session.router, prefix="/api/v1")
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
