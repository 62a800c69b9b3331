"""
FastAPI application factory.

* Registers routes for orders, quotes, geolocation and admin.
* Starts / stops the background quote expiry worker via lifespan events.
* Applies rate-limiting middleware.
* Renders every domain error as ``{"success": false, "error": {...}}``.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from khidma.api.middleware import limiter
from khidma.api.routes import admin, geolocation, orders, quotes
from khidma.domain.errors import DomainError, RateLimited, StoreUnavailable, ValidationError
from khidma.workers import quote_expiry as _quote_expiry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry worker on startup; stop on shutdown."""
    await _quote_expiry.start_expiry_loop()
    yield
    await _quote_expiry.stop_expiry_loop()


def error_response(error: DomainError) -> JSONResponse:
    headers = {}
    if isinstance(error, RateLimited) and "retry_after" in error.details:
        headers["Retry-After"] = str(error.details["retry_after"])
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.to_dict()},
        headers=headers,
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc)
    return error_response(exc)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
        for e in exc.errors()
    ]
    return error_response(ValidationError("Invalid request", {"errors": errors}))


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Store failure on %s %s: %r", request.method, request.url.path, exc)
    return error_response(StoreUnavailable("A backing store is unavailable, retry later"))


def create_app() -> FastAPI:
    app = FastAPI(
        title="Khidma Logistics API",
        description=(
            "Freight marketplace core: shippers post transport orders, "
            "carriers answer with quotes, and accepted orders are tracked "
            "through delivery.  Includes distance, route and price "
            "estimation for Senegal road freight."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Errors
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(OperationalError, store_error_handler)
    app.add_exception_handler(PoolTimeoutError, store_error_handler)
    app.add_exception_handler(RedisError, store_error_handler)

    # Routers
    app.include_router(orders.router, prefix="/api/v1")
    app.include_router(quotes.router, prefix="/api/v1")
    app.include_router(geolocation.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
