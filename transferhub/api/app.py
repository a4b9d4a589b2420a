"""
FastAPI application factory.

* Registers routes for checkout, trips, partners, admin and invites.
* Maps engine errors onto HTTP status codes in one handler.
* Wires the Redis change feed and, when enabled, the automatic matcher
  via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from transferhub.api.middleware import limiter
from transferhub.api.routes import admin, checkout, invites, partners, trips
from transferhub.config import settings
from transferhub.domain.errors import DocumentsIncomplete, EngineError
from transferhub.infrastructure.change_feed import ChangeFeed
from transferhub.infrastructure.database import engine
from transferhub.infrastructure.payment_gateway import StripeGateway
from transferhub.infrastructure.redis_client import close_redis, get_redis
from transferhub.workers import matcher as _matcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Attach the change feed and optional matcher; tear both down on exit."""
    app.state.change_feed = ChangeFeed(await get_redis())
    if settings.auto_assign_enabled:
        await _matcher.start_matching_loop()
    yield
    if settings.auto_assign_enabled:
        await _matcher.stop_matching_loop()
    await close_redis()
    await engine.dispose()


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    body = {"error": exc.code, "detail": exc.message}
    if isinstance(exc, DocumentsIncomplete):
        body["missing"] = [m.value for m in exc.missing]
    if exc.http_status >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc)
    return JSONResponse(status_code=exc.http_status, content=body)


def create_app() -> FastAPI:
    app = FastAPI(
        title="TransferHub Trip & Driver Lifecycle API",
        description=(
            "Books airport transfers, verifies partner drivers, assigns "
            "drivers to trips and tracks each trip through to completion."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(EngineError, engine_error_handler)

    # Collaborators shared by the routers
    app.state.gateway = StripeGateway(
        settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        return_url=settings.checkout_return_url,
        timeout=settings.gateway_timeout_seconds,
    )
    app.state.profile_cache = None  # built by get_profile_cache with the request clock

    # Routers
    app.include_router(checkout.router, prefix="/api/v1")
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(partners.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(invites.router, prefix="/api/v1")

    return app
