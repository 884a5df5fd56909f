"""Service entry point hosting the offer engine.

Configures:
- **structlog** with JSON rendering (production) or colored console (development),
  forwarding ERROR events to Sentry when a DSN is set
- **Engines** (offer sessions, merges, orders) wired onto one SQLite database
- **Notifications** via signed webhook, or the structured log when no URL is set
- **FastAPI** shell with ``/health``, ``/ready``, ``/metrics`` and request IDs
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from offer_engine.config import Settings, get_settings, validate_credentials
from offer_engine.domain.errors import ErrorKind, OfferEngineError
from offer_engine.domain.types import StockSubtractionTiming
from offer_engine.health import register_health_routes
from offer_engine.notifications.dispatcher import Notifier
from offer_engine.notifications.webhook import LoggingNotifier, WebhookNotifier
from offer_engine.observability.metrics import setup_metrics
from offer_engine.observability.middleware import RequestIdMiddleware
from offer_engine.observability.sentry import get_sentry_processor, init_sentry
from offer_engine.state.schema import connect
from offer_engine.wiring import build_engines

logger = structlog.get_logger()

# HTTP status used when an engine error escapes to the service shell.
ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.BLOCKED: 403,
    ErrorKind.ALREADY_CLOSED: 409,
    ErrorKind.INVALID_SESSION_STATE: 409,
    ErrorKind.LOCK_TIMEOUT: 503,
}


def configure_logging(production: bool = False, sentry_enabled: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Args:
        production: JSON rendering at INFO level if ``True``, colored
            console rendering at DEBUG level otherwise.
        sentry_enabled: Insert the structlog-sentry processor.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
    ]
    if sentry_enabled:
        shared_processors.append(get_sentry_processor())
    shared_processors += [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="offer-engine")


def build_notifier(settings: Settings) -> Notifier:
    """Return the webhook notifier if configured, the logging notifier otherwise."""
    if settings.notification_webhook_url:
        logger.info("notification_webhook_enabled")
        return WebhookNotifier(
            settings.notification_webhook_url,
            secret=settings.notification_webhook_secret.get_secret_value(),
        )
    logger.info("notification_webhook_disabled")
    return LoggingNotifier()


def initialize_services(settings: Settings | None = None) -> dict[str, Any]:
    """Set up the database connection and every engine.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()

    services: dict[str, Any] = {}

    db_path = settings.db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db_conn = connect(db_path)
    services["db_conn"] = db_conn

    engines = build_engines(
        db_conn,
        lock_timeout=settings.lock_acquire_timeout_seconds,
        default_timing=StockSubtractionTiming(settings.default_stock_timing),
        notifier=build_notifier(settings),
    )
    services["engines"] = engines
    services["_settings"] = settings
    logger.info(
        "engines_initialized",
        db_path=str(db_path),
        lock_timeout=settings.lock_acquire_timeout_seconds,
        default_stock_timing=settings.default_stock_timing,
    )
    return services


def close_services(services: dict[str, Any]) -> None:
    db_conn = services.pop("db_conn", None)
    if db_conn is not None:
        db_conn.close()
        logger.info("database_connection_closed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Log startup and close the database connection on shutdown."""
    logger.info("offer_engine_starting")
    yield
    close_services(app.state.services)


async def engine_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render an :class:`OfferEngineError` as ``{"error": kind, "message": ...}``."""
    assert isinstance(exc, OfferEngineError)
    status = ERROR_STATUS.get(exc.kind, 400)
    return JSONResponse(content=exc.to_dict(), status_code=status)


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with lifespan, probes, metrics, and request IDs.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="Offer Engine", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("_settings", get_settings())
    fastapi_app.add_middleware(RequestIdMiddleware)
    fastapi_app.add_exception_handler(OfferEngineError, engine_error_handler)
    register_health_routes(fastapi_app)
    setup_metrics(fastapi_app)
    return fastapi_app


async def main() -> None:
    """Main entry point.

    1. Load settings and configure logging (and Sentry)
    2. Validate configuration
    3. Initialize services and create the FastAPI app
    4. Serve with uvicorn until shutdown
    """
    settings = get_settings()
    sentry_enabled = init_sentry(
        settings.sentry_dsn,
        environment="production" if settings.production else "development",
    )
    configure_logging(production=settings.production, sentry_enabled=sentry_enabled)
    logger.info("application_starting")

    validate_credentials(settings)

    services = initialize_services(settings)
    fastapi_app = create_app(services)

    config = uvicorn.Config(
        fastapi_app,
        host="0.0.0.0",
        port=settings.service_port,
        log_level="info",
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    finally:
        close_services(services)


if __name__ == "__main__":
    asyncio.run(main())
