"""
FastAPI application entry point with health endpoints and service routing.

This module provides the main FastAPI application instance with CORS
configuration, rate limiting, request logging, health check endpoints,
exception handlers mapping marketplace errors to HTTP responses, and the
periodic payment expiry sweep run from the application lifespan.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from ridecycle.api.v1.admin import router as admin_router
from ridecycle.api.v1.offers import router as offers_router
from ridecycle.api.v1.orders import router as orders_router
from ridecycle.api.v1.payments import router as payments_router
from ridecycle.core.config import get_settings
from ridecycle.core.exceptions import MarketplaceError, ServiceResult
from ridecycle.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from ridecycle.core.ratelimit import limiter
from ridecycle.database.connection import (
    check_database_health,
    close_database_connections,
    get_session_factory,
    initialize_database,
)
from ridecycle.services.payments.sweeper import PaymentExpirySweeper

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)


async def expire_overdue_payments(interval_seconds: int) -> None:
    """
    Background task expiring pending payments past their deadline.

    Runs the expiry sweep every ``interval_seconds``; a failed run is logged
    and retried on the next tick.
    """
    while True:
        try:
            sweeper = PaymentExpirySweeper(get_session_factory())
            await sweeper.sweep()
        except Exception as e:
            logger.error(
                "Payment expiry sweep failed",
                error=str(e),
                error_type=type(e).__name__,
            )
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Verifies database connectivity (outside the test environment), starts
    the payment expiry sweeper when enabled, and releases resources on
    shutdown.
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    with log_performance(logger, "application_startup"):
        if not settings.is_test:
            await initialize_database()

    sweeper_task: Optional[asyncio.Task] = None
    if settings.sweeper_enabled and not settings.is_test:
        sweeper_task = asyncio.create_task(
            expire_overdue_payments(settings.sweeper_interval_seconds)
        )
        logger.info(
            "Payment expiry sweeper started",
            interval_seconds=settings.sweeper_interval_seconds,
        )

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        if sweeper_task is not None:
            sweeper_task.cancel()
            try:
                await sweeper_task
            except asyncio.CancelledError:
                pass
            logger.info("Payment expiry sweeper stopped")
        await close_database_connections()


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Used bicycle marketplace: offers, orders and bank transfer payments",
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """
    Set the correlation ID, log the request and its duration, and return
    the ID in the ``X-Request-ID`` header.
    """
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    finally:
        clear_context()


@app.exception_handler(MarketplaceError)
async def marketplace_exception_handler(
    request: Request, exc: MarketplaceError
) -> JSONResponse:
    """Map domain errors to their HTTP status with a ``success: false`` body."""
    log_method = logger.error if exc.http_status >= 500 else logger.warning
    log_method(
        "Request rejected",
        method=request.method,
        path=request.url.path,
        error=exc.message,
        error_type=type(exc).__name__,
        status_code=exc.http_status,
    )

    result = ServiceResult.failure(exc)
    return JSONResponse(status_code=result.status, content=result.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors with field level details."""
    errors = exc.errors()
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=errors,
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "errors": [
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in errors
            ],
            "context": {"request_id": get_request_id()},
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions without exposing internal details.
    """
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "errors": ["An unexpected error occurred"],
            "context": {"request_id": get_request_id()},
        },
    )


@app.get("/health", tags=["Health"], summary="Health check endpoint")
async def health_check() -> dict[str, str]:
    """Always 200 while the process is running."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get("/ready", tags=["Health"], summary="Readiness check endpoint")
async def readiness_check():
    """
    Readiness check for orchestration; 503 when the database is unreachable.
    """
    if not await check_database_health(max_retries=1):
        logger.warning("Readiness check failed", database="unhealthy")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "database": "unhealthy",
            },
        )

    return {
        "status": "ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "database": "healthy",
    }


@app.get("/live", tags=["Health"], summary="Liveness check endpoint")
async def liveness_check() -> dict[str, str]:
    return {
        "status": "alive",
        "service": settings.app_name,
        "version": settings.app_version,
    }


app.include_router(offers_router, prefix=settings.api_v1_prefix)
app.include_router(orders_router, prefix=settings.api_v1_prefix)
app.include_router(payments_router, prefix=settings.api_v1_prefix)
app.include_router(admin_router, prefix=settings.api_v1_prefix)
