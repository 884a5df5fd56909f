"""Tests for centralized Settings, credential validation, and get_settings cache.

Covers: defaults, env-override, field validation, production credential gate,
dev-mode warnings, and lru_cache behavior.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from offer_engine.config import Settings, get_settings, validate_credentials

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    """Clear get_settings lru_cache before each test."""
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Settings defaults
# ---------------------------------------------------------------------------

class TestSettingsDefaults:
    """Verify that Settings fields have the expected default values."""

    def test_settings_defaults(self) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is False
        assert s.service_port == 8000
        assert s.db_path == Path("data/offer_engine.db")
        assert s.lock_acquire_timeout_seconds == 30.0
        assert s.default_stock_timing == "on_accepted"
        assert s.notification_webhook_url == ""

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRODUCTION", "true")
        monkeypatch.setenv("SERVICE_PORT", "9090")
        monkeypatch.setenv("LOCK_ACQUIRE_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("NOTIFICATION_WEBHOOK_SECRET", "s3cret")

        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is True
        assert s.service_port == 9090
        assert s.lock_acquire_timeout_seconds == 2.5
        assert s.notification_webhook_secret.get_secret_value() == "s3cret"

    def test_secret_not_in_repr(self) -> None:
        s = Settings(
            _env_file=None,  # type: ignore[call-arg]
            notification_webhook_secret="s3cret",  # type: ignore[arg-type]
        )
        assert "s3cret" not in repr(s)


class TestSettingsValidation:
    @pytest.mark.parametrize("timeout", [0, -1])
    def test_timeout_must_be_positive(self, timeout: float) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, lock_acquire_timeout_seconds=timeout)  # type: ignore[call-arg]

    def test_unknown_stock_timing(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, default_stock_timing="on_received")  # type: ignore[call-arg]

    def test_get_settings_exits_on_invalid_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEFAULT_STOCK_TIMING", "whenever")
        with pytest.raises(SystemExit) as exc_info:
            get_settings()
        assert exc_info.value.code == 1


# ---------------------------------------------------------------------------
# Credential validation
# ---------------------------------------------------------------------------

class TestValidateCredentials:
    """Verify validate_credentials behaviour in production and dev modes."""

    def test_production_missing(self) -> None:
        """Production mode exits when configuration is missing."""
        settings = Settings(_env_file=None, production=True)  # type: ignore[call-arg]

        with pytest.raises(SystemExit) as exc_info:
            validate_credentials(settings)

        assert exc_info.value.code == 1

    def test_production_webhook_without_secret(self) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            production=True,
            notification_webhook_url="https://hooks.test/offers",
            sentry_dsn="https://key@o0.ingest.sentry.io/0",
        )
        with pytest.raises(SystemExit):
            validate_credentials(settings)

    def test_production_valid(self) -> None:
        """Production mode passes when everything is configured."""
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            production=True,
            notification_webhook_url="https://hooks.test/offers",
            notification_webhook_secret="s3cret",  # type: ignore[arg-type]
            sentry_dsn="https://key@o0.ingest.sentry.io/0",
        )

        # Should NOT raise or exit
        validate_credentials(settings)

    def test_dev_mode_warns(self) -> None:
        """Dev mode logs warnings but does NOT exit."""
        settings = Settings(_env_file=None, production=False)  # type: ignore[call-arg]
        validate_credentials(settings)


# ---------------------------------------------------------------------------
# get_settings cache
# ---------------------------------------------------------------------------

class TestGetSettingsCached:
    """Verify lru_cache on get_settings."""

    def test_get_settings_cached(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Calling get_settings() twice returns the exact same object."""
        monkeypatch.delenv("PRODUCTION", raising=False)

        first = get_settings()
        second = get_settings()

        assert first is second
