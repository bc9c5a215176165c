# pyright: reportMissingTypeStubs=false
"""
Reservation Backend API

A FastAPI application that arbitrates bookings of shared facilities and
registrations for capacity-limited programs.

Features:
- Facility availability checks and slot listings
- Idempotent reservation creation with waitlisting
- Cancellation with automatic waitlist promotion
- Background outbox delivery and reminder scheduling
- PostgreSQL database with SQLAlchemy ORM
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import facilities, reservations
from core.config import ENABLE_BACKGROUND_JOBS, LOG_LEVEL
from core.constants import CORS_ORIGINS
from services.outbox_scheduler import start_outbox_worker, stop_outbox_worker
from services.rate_limiter import RateLimiter
from services.reminder_service import start_reminder_scheduler, stop_reminder_scheduler
from services.reservation_errors import ReservationError

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("📅 Reservation API starting...")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("🚀 Starting Reservation Backend API")

    if ENABLE_BACKGROUND_JOBS:
        # Note: Database sessions are created fresh for each scheduler run
        try:
            await start_outbox_worker()
            logger.info("✅ Outbox worker started")
        except Exception as e:
            logger.exception(f"❌ Failed to start outbox worker: {e}")

        try:
            await start_reminder_scheduler()
            logger.info("✅ Reservation reminder scheduler started")
        except Exception as e:
            logger.exception(f"❌ Failed to start reminder scheduler: {e}")
    else:
        logger.info("Background jobs disabled (ENABLE_BACKGROUND_JOBS=false)")

    yield

    if ENABLE_BACKGROUND_JOBS:
        try:
            await stop_reminder_scheduler()
            logger.info("🛑 Reservation reminder scheduler stopped")
        except Exception as e:
            logger.exception(f"❌ Error stopping reminder scheduler: {e}")

        try:
            await stop_outbox_worker()
            logger.info("🛑 Outbox worker stopped")
        except Exception as e:
            logger.exception(f"❌ Error stopping outbox worker: {e}")

    logger.info("🛑 Shutting down Reservation Backend API")


# Create FastAPI application
app = FastAPI(
    title="Reservation Backend",
    description="Reservation arbitration for shared facilities and programs",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

app.state.rate_limiter = RateLimiter()

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    facilities.router,
    tags=["facilities"],
    responses={
        400: {"description": "Bad request"},
        404: {"description": "Resource not found"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    reservations.router,
    tags=["reservations"],
    responses={
        400: {"description": "Bad request"},
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        429: {"description": "Too many requests"},
        503: {"description": "Service busy, retry"},
        500: {"description": "Internal server error"},
    },
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "Reservation Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


# Global exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    """Map typed reservation errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.warning(f"{exc.code.value}: {exc.message}")
    else:
        logger.info(f"Reservation rejected ({exc.code.value}): {exc.message}")
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "type": exc.code.value},
        headers=headers,
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions."""
    logger.warning(f"ValueError: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": "validation_error"},
    )
