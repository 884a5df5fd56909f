"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and a ``validate_credentials()``
startup gate that enforces required values in production mode.

This module has no imports from the rest of the ``offer_engine`` package, so
anything can import it without cycles.
"""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file.

    ``SecretStr`` fields prevent accidental leaks in logs or error output.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    service_port: int = 8000

    # -- Storage ---------------------------------------------------------------
    db_path: Path = Path("data/offer_engine.db")

    # -- Engine ----------------------------------------------------------------
    lock_acquire_timeout_seconds: float = 30.0
    default_stock_timing: str = "on_accepted"

    # -- Notifications ---------------------------------------------------------
    notification_webhook_url: str = ""
    notification_webhook_secret: SecretStr = SecretStr("")

    # -- Observability ---------------------------------------------------------
    sentry_dsn: str = ""

    @field_validator("lock_acquire_timeout_seconds")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("lock_acquire_timeout_seconds must be positive")
        return v

    @field_validator("default_stock_timing")
    @classmethod
    def known_timing(cls, v: str) -> str:
        if v not in ("on_accepted", "dont_subtract"):
            raise ValueError("default_stock_timing must be 'on_accepted' or 'dont_subtract'")
        return v


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    try:
        return Settings()
    except ValidationError as exc:
        # Only the structured errors list; the exception text may carry secrets.
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def validate_credentials(settings: Settings) -> None:
    """Enforce required configuration at startup.

    In **production** mode (``settings.production is True``), the application
    exits with a clear error block if anything required is missing.  In
    **development** mode, each gap is logged as a warning and startup continues.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not settings.notification_webhook_url:
        errors.append("NOTIFICATION_WEBHOOK_URL is empty or not set")
    elif not settings.notification_webhook_secret.get_secret_value():
        errors.append("NOTIFICATION_WEBHOOK_SECRET is empty or not set")

    if not settings.sentry_dsn:
        errors.append("SENTRY_DSN is empty or not set")

    if not errors:
        logger.info("credential_validation_passed")
        return

    if settings.production:
        for err in errors:
            logger.error("credential_missing", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        print("Missing required configuration for production mode:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("credential_missing_dev", detail=err)
