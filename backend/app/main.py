# backend/app/main.py

import asyncio
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as SA_TimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import api_availability, api_booking, api_ops, api_payment
from .core.config import settings
from .core.observability import setup_logging
from .database import SessionLocal
from .services.reconciliation_jobs import run_all_jobs
from .utils.errors import BookingError
from .utils.notifications import alert_scheduler_failure
from .utils.redis_cache import close_redis_client
from .utils.status_logger import register_status_listeners

setup_logging()
register_status_listeners()
logger = logging.getLogger(__name__)

app = FastAPI(title="Beauty Booking API", default_response_class=ORJSONResponse)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
logger.info("CORS origins set to: %s", settings.CORS_ORIGINS)


@app.middleware("http")
async def catch_exceptions(request: Request, call_next):
    """Return JSON responses for errors raised outside route handlers."""
    try:
        return await call_next(request)
    except StarletteHTTPException as exc:
        logger.error("HTTP error %s at %s: %s", exc.status_code, request.url.path, exc.detail)
        return ORJSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    except SA_TimeoutError as exc:  # DB pool timeout -> 503 to reduce retry storms
        logger.error("DB timeout at %s: %s", request.url.path, str(exc))
        return ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Database busy, please retry"},
        )


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Render lifecycle errors as ``{"detail": {"message", "field_errors"}}``."""
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "%s at %s: %s %s",
        type(exc).__name__,
        request.url.path,
        exc.message,
        exc.field_errors,
    )
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"detail": {"message": exc.message, "field_errors": exc.field_errors}},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return validation errors with details and log them for debugging."""
    errors = exc.errors()
    logger.warning("Validation error at %s: %s", request.url.path, errors)
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": errors},
    )


@app.get("/healthz", tags=["health"])
def healthz():
    """Readiness check: the database answers a trivial query."""
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except OperationalError as exc:
        logger.warning("Health check failed: %s", exc)
        return ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "error", "reason": "db"},
        )
    return {"status": "ok"}


api_prefix = settings.API_V1_STR  # usually something like "/api/v1"

app.include_router(api_availability.router, prefix=f"{api_prefix}")
app.include_router(api_booking.router, prefix=f"{api_prefix}")
app.include_router(api_payment.router, prefix=f"{api_prefix}")
app.include_router(api_ops.router, prefix=f"{api_prefix}")


async def reconciliation_loop() -> None:
    """Run every reconciliation job on a fixed interval.

    Disabled by default; production deployments call the ops endpoint or
    ``scripts/run_jobs.py`` from an external scheduler instead.
    """
    while True:
        await asyncio.sleep(settings.JOB_INTERVAL_SECONDS)
        # Retry with backoff on transient DB failures
        delay = 5
        max_retries = 5
        for attempt in range(max_retries):
            try:
                summary = await asyncio.to_thread(run_all_jobs)
                logger.info("Reconciliation summary: %s", summary)
                break
            except OperationalError as exc:  # pragma: no cover - transient DB outage
                alert_scheduler_failure(exc)
                if attempt < max_retries - 1:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, 60)
                    continue
                # Give up for this cycle; try again next tick
                break
            except Exception as exc:  # pragma: no cover - keep the loop alive
                alert_scheduler_failure(exc)
                break


@app.on_event("startup")
async def start_background_tasks() -> None:
    if settings.ENABLE_BACKGROUND_JOBS:
        logger.info("Starting reconciliation loop every %ss", settings.JOB_INTERVAL_SECONDS)
        asyncio.create_task(reconciliation_loop())


@app.on_event("shutdown")
def shutdown_redis_client() -> None:
    """Close Redis connections when the application shuts down."""
    logger.info("Closing Redis client")
    close_redis_client()
