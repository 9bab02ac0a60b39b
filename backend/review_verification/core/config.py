"""Application configuration loaded from environment variables.

Settings for token lifecycle, submission validation, cleanup cadence,
audit trail, storage backend and admin authentication. Uses
pydantic-settings for validation and .env file support.
"""

import logging
from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "reviews_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # CORS (Security)
    # Default allows localhost:3000 for the portfolio frontend in development
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Storage
    # "memory" keeps tokens in-process (single instance, tests);
    # "database" uses the SQLAlchemy repository against PostgreSQL.
    storage_backend: Literal["memory", "database"] = "memory"
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "portfolio_reviews"
    database_user: str = "reviews_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # Verification tokens
    token_ttl_hours: int = 24
    token_max_attempts: int = 5

    # Cleanup sweep
    cleanup_enabled: bool = True
    cleanup_interval_seconds: int = 3600
    cleanup_grace_period_hours: int = 1
    cleanup_max_token_age_days: int = 7

    # Submission validation
    submission_window_ms: int = 60_000
    submission_max_per_window: int = 3
    submission_timestamp_window_seconds: int = 300
    trusted_domain_patterns: list[str] = [
        r"\.edu$",
        r"\.ac\.uk$",
        r"\.edu\.au$",
        r"\.org$",
    ]
    trusted_relationships: list[str] = ["professor", "supervisor"]

    # Audit trail
    audit_log_path: str = "data/audit/verification.log"
    audit_max_retries: int = 3
    audit_retry_base_delay_ms: int = 50

    # Admin authentication
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "portfolio-reviews"
    auth_cookie_name: str = "reviews.admin-token"

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_verify: str = "10/minute"
    rate_limit_admin: str = "30/minute"
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants and production requirements.

        Checks:
        - Token TTL, attempt limit, and cleanup cadence must be positive
        - Token TTL must not outlive the cleanup max token age
        - LOG_LEVEL must name a standard logging level
        - Submission window and per-window cap must be positive
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars in production
        """
        positive_fields = {
            "TOKEN_TTL_HOURS": self.token_ttl_hours,
            "TOKEN_MAX_ATTEMPTS": self.token_max_attempts,
            "CLEANUP_INTERVAL_SECONDS": self.cleanup_interval_seconds,
            "CLEANUP_MAX_TOKEN_AGE_DAYS": self.cleanup_max_token_age_days,
            "SUBMISSION_WINDOW_MS": self.submission_window_ms,
            "SUBMISSION_MAX_PER_WINDOW": self.submission_max_per_window,
            "SUBMISSION_TIMESTAMP_WINDOW_SECONDS": (
                self.submission_timestamp_window_seconds
            ),
        }
        for name, value in positive_fields.items():
            if value <= 0:
                msg = f"{name} must be positive. Got: {value}"
                raise ValueError(msg)

        max_ttl_hours = self.cleanup_max_token_age_days * 24
        if self.token_ttl_hours > max_ttl_hours:
            msg = (
                f"TOKEN_TTL_HOURS must not exceed {max_ttl_hours} "
                f"(CLEANUP_MAX_TOKEN_AGE_DAYS). Got: {self.token_ttl_hours}"
            )
            raise ValueError(msg)

        if self.log_level.upper() not in logging.getLevelNamesMapping():
            msg = f"LOG_LEVEL is not a logging level. Got: {self.log_level}"
            raise ValueError(msg)

        if self.cleanup_grace_period_hours < 0:
            msg = (
                "CLEANUP_GRACE_PERIOD_HOURS cannot be negative. "
                f"Got: {self.cleanup_grace_period_hours}"
            )
            raise ValueError(msg)

        if self.audit_max_retries < 1:
            msg = f"AUDIT_MAX_RETRIES must be at least 1. Got: {self.audit_max_retries}"
            raise ValueError(msg)

        # CORS wildcard with credentials is invalid (all environments)
        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "Admin endpoints use credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if (
                self.storage_backend == "database"
                and self.database_password == _INSECURE_DEFAULT_PASSWORD
            ):
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters in production. Generate with: "
                    'python -c "import secrets; print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)

        return self


settings = Settings()
