"""FastAPI application setup and configuration."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ticketeer.api import api_router
from ticketeer.cache import CacheInvalidator, RedisCache
from ticketeer.config import Settings, get_settings
from ticketeer.database import DatabaseManager
from ticketeer.middleware import ErrorHandlerMiddleware, LoggingMiddleware, request_validation_handler
from ticketeer.schemas.common import HealthStatus
from ticketeer.services.expiry_sweeper import ExpirySweeper
from ticketeer.services.image_store import S3ImageStore
from ticketeer.services.notification_service import NotificationDispatcher
from ticketeer.utils.auth import TokenAuthProvider
from ticketeer.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "ticketeer"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    state = app.state
    logger.info("Starting Ticketeer booking backend")

    await state.database.initialize()
    await state.cache.initialize()

    if state.settings.sweeper_enabled:
        await state.sweeper.start()

    yield

    logger.info("Shutting down Ticketeer booking backend")
    await state.sweeper.stop()
    await state.cache.close()
    await state.database.close()


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[DatabaseManager] = None,
    cache: Optional[RedisCache] = None,
    auth_provider: Optional[TokenAuthProvider] = None,
    notifier: Optional[NotificationDispatcher] = None,
    image_store: Optional[S3ImageStore] = None,
) -> FastAPI:
    """
    Build the application and its collaborators.

    Any collaborator can be passed in to replace the default built from
    ``settings``.
    """
    settings = settings or get_settings()

    if settings.configure_logging:
        setup_logging(
            log_level="DEBUG" if settings.debug else settings.log_level,
            log_file=settings.log_file,
            enable_json_logging=settings.enable_json_logging,
            environment=settings.environment,
        )

    app = FastAPI(
        title="Ticketeer API",
        description=(
            "Event ticketing backend. Seats are held for a limited time, "
            "confirmed with payment, and released on expiry, cancellation or refund."
        ),
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=[
            {"name": "events", "description": "Event listing and management"},
            {"name": "bookings", "description": "Seat holds, confirmation, cancellation and refunds"},
            {"name": "health", "description": "Service health"},
        ],
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database or DatabaseManager(settings)
    app.state.cache = cache or RedisCache(settings)
    app.state.auth_provider = auth_provider or TokenAuthProvider(settings)
    app.state.notifier = notifier or NotificationDispatcher(settings)
    app.state.image_store = image_store or S3ImageStore(settings)
    app.state.sweeper = ExpirySweeper(
        app.state.database,
        settings,
        invalidator=CacheInvalidator(app.state.cache),
    )

    # Error handling sits innermost so request logging sees the final status.
    app.add_middleware(ErrorHandlerMiddleware, debug=settings.debug)
    app.add_middleware(LoggingMiddleware, log_requests=settings.enable_request_logging)

    if settings.debug:
        cors_origins = ["*"]
        cors_allow_credentials = False  # Cannot use credentials with wildcard origins
    else:
        cors_origins = settings.cors_origins
        cors_allow_credentials = settings.cors_allow_credentials

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        expose_headers=settings.cors_expose_headers
    )

    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(api_router)

    @app.get("/health", response_model=HealthStatus, tags=["health"])
    async def health_check(request: Request):
        """
        Liveness check with a quick look at the database and cache.

        Always answers 200 while the process is up; ``status`` is
        ``degraded`` when the database cannot be reached.
        """
        state = request.app.state
        dependencies = {}

        try:
            async with state.database.get_session() as session:
                await session.execute(text("SELECT 1"))
            dependencies["database"] = {"status": "healthy"}
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            logger.warning("Health check: database unavailable: %s", e)
            dependencies["database"] = {"status": "unhealthy"}

        dependencies["cache"] = {"status": "healthy" if state.cache.enabled else "disabled"}
        dependencies["sweeper"] = {
            "status": "running" if state.sweeper.running else "stopped",
            "last_result": state.sweeper.last_result.to_dict() if state.sweeper.last_result else None,
        }

        return HealthStatus(
            status="healthy" if dependencies["database"]["status"] == "healthy" else "degraded",
            service=SERVICE_NAME,
            version=VERSION,
            timestamp=datetime.now(timezone.utc).isoformat(),
            dependencies=dependencies,
        )

    return app


app = create_app()
