"""Tests for application configuration.

Settings for token lifecycle, submission limits, cleanup cadence, audit
trail and admin authentication. Tests cover defaults, invariants and
production security validation.
"""

import logging

import pytest
from pydantic import ValidationError

from review_verification.core.config import _INSECURE_DEFAULT_PASSWORD, Settings
from review_verification.main import configure_logging, create_app
from review_verification.repositories.token_repository import InMemoryTokenRepository
from review_verification.services.audit_logger import InMemoryAuditSink

# Reusable test constants
_SECURE_DB_PASSWORD = "my-secure-production-password-123!"
_TEST_AUTH_SECRET = "a" * 64
_PRODUCTION = "production"


class TestDefaults:
    """Default values match the documented behavior."""

    def test_token_defaults(self):
        s = Settings()
        assert s.token_ttl_hours == 24
        assert s.token_max_attempts == 5

    def test_cleanup_defaults(self):
        s = Settings()
        assert s.cleanup_interval_seconds == 3600
        assert s.cleanup_grace_period_hours == 1
        assert s.cleanup_max_token_age_days == 7

    def test_submission_defaults(self):
        s = Settings()
        assert s.submission_window_ms == 60_000
        assert s.submission_max_per_window == 3
        assert s.submission_timestamp_window_seconds == 300
        assert s.trusted_relationships == ["professor", "supervisor"]

    def test_auth_secret_defaults_to_empty(self):
        """Admin access is closed until a secret is configured."""
        s = Settings()
        assert s.auth_secret.get_secret_value() == ""

    def test_storage_defaults_to_memory(self):
        assert Settings().storage_backend == "memory"

    def test_database_url_uses_asyncpg(self):
        s = Settings(database_host="db", database_port=6543)
        assert s.database_url.startswith("postgresql+asyncpg://")
        assert "@db:6543/" in s.database_url


class TestInvariants:
    """Numeric settings must be positive."""

    @pytest.mark.parametrize(
        "field",
        [
            "token_ttl_hours",
            "token_max_attempts",
            "cleanup_interval_seconds",
            "cleanup_max_token_age_days",
            "submission_window_ms",
            "submission_max_per_window",
            "submission_timestamp_window_seconds",
        ],
    )
    def test_rejects_zero(self, field: str):
        with pytest.raises(ValidationError) as exc_info:
            Settings(**{field: 0})

        assert "must be positive" in str(exc_info.value)

    def test_rejects_negative_grace_period(self):
        with pytest.raises(ValidationError, match="cannot be negative"):
            Settings(cleanup_grace_period_hours=-1)

    def test_allows_zero_grace_period(self):
        assert Settings(cleanup_grace_period_hours=0).cleanup_grace_period_hours == 0

    def test_rejects_ttl_beyond_max_token_age(self):
        with pytest.raises(
            ValidationError, match="TOKEN_TTL_HOURS must not exceed 168"
        ):
            Settings(token_ttl_hours=169)

    def test_allows_ttl_equal_to_max_token_age(self):
        assert Settings(token_ttl_hours=168).token_ttl_hours == 168

    def test_rejects_zero_audit_retries(self):
        with pytest.raises(ValidationError, match="AUDIT_MAX_RETRIES"):
            Settings(audit_max_retries=0)

    def test_rejects_wildcard_cors(self):
        with pytest.raises(ValidationError, match="wildcard"):
            Settings(allowed_origins=["*"])


class TestProductionSecurityValidation:
    """Tests for production security requirements."""

    def test_allows_default_password_in_development(self):
        """Default password is allowed in development environment."""
        s = Settings(
            environment="development",
            storage_backend="database",
            database_password=_INSECURE_DEFAULT_PASSWORD,
        )
        assert s.database_password == _INSECURE_DEFAULT_PASSWORD

    def test_rejects_default_password_in_production(self):
        """Default password is rejected when production uses the database."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(
                environment=_PRODUCTION,
                storage_backend="database",
                database_password=_INSECURE_DEFAULT_PASSWORD,
                auth_secret=_TEST_AUTH_SECRET,
            )

        errors = exc_info.value.errors()
        assert len(errors) == 1
        assert "Cannot use default database password in production" in str(
            errors[0]["msg"]
        )

    def test_default_password_ignored_for_memory_backend(self):
        """No database, no password requirement."""
        s = Settings(
            environment=_PRODUCTION,
            storage_backend="memory",
            auth_secret=_TEST_AUTH_SECRET,
        )
        assert s.environment == _PRODUCTION

    def test_allows_custom_password_in_production(self):
        """Custom password is allowed in production environment."""
        s = Settings(
            environment=_PRODUCTION,
            storage_backend="database",
            database_password=_SECURE_DB_PASSWORD,
            auth_secret=_TEST_AUTH_SECRET,
        )
        assert s.database_password == _SECURE_DB_PASSWORD

    def test_rejects_short_auth_secret_in_production(self):
        """AUTH_SECRET shorter than 32 characters is rejected."""
        with pytest.raises(ValidationError, match="AUTH_SECRET must be at least"):
            Settings(environment=_PRODUCTION, auth_secret="too-short")

    def test_rejects_empty_auth_secret_in_production(self):
        with pytest.raises(ValidationError, match="AUTH_SECRET"):
            Settings(environment=_PRODUCTION)

    def test_allows_empty_auth_secret_in_development(self):
        """Development runs without admin access."""
        s = Settings(environment="development")
        assert s.auth_secret.get_secret_value() == ""


class TestLogLevel:
    """LOG_LEVEL is validated and applied when the app is built."""

    def test_rejects_unknown_level(self):
        with pytest.raises(ValidationError, match="LOG_LEVEL"):
            Settings(log_level="chatty")

    def test_create_app_applies_level(self):
        package_logger = logging.getLogger("review_verification")
        try:
            create_app(
                app_settings=Settings(log_level="warning", cleanup_enabled=False),
                repository=InMemoryTokenRepository(),
                audit_sink=InMemoryAuditSink(),
            )
            assert package_logger.level == logging.WARNING
        finally:
            configure_logging("INFO")

        assert package_logger.level == logging.INFO
