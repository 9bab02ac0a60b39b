"""FastAPI application entry point.

This module creates and configures the FastAPI application, including:
- Service wiring (token store, audit trail, workflow, cleanup scheduler)
- Exception handlers for API errors
- API v1 router mounting
- Health check endpoint
"""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from review_verification.api.v1.router import router as v1_router
from review_verification.core.config import Settings, settings
from review_verification.core.database import create_engine, create_session_factory
from review_verification.core.errors import APIError, RateLimitedError
from review_verification.core.rate_limiting import limiter, rate_limit_exceeded_handler
from review_verification.core.responses import ErrorDetail, ErrorResponse
from review_verification.repositories.sql_token_repository import SqlTokenRepository
from review_verification.repositories.token_repository import (
    InMemoryTokenRepository,
    TokenRepository,
)
from review_verification.services.audit_logger import (
    AuditLogger,
    AuditSink,
    JsonlAuditSink,
)
from review_verification.services.cleanup_scheduler import CleanupScheduler
from review_verification.services.review_workflow import (
    LoggingTokenDelivery,
    ReviewWorkflow,
    TokenDelivery,
)
from review_verification.services.submission_rate_limiter import (
    SubmissionRateLimiter,
)
from review_verification.services.submission_validator import SubmissionValidator
from review_verification.services.token_service import TokenService

logger = structlog.get_logger()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses.

    Headers added:
    - X-Frame-Options: Prevents clickjacking attacks
    - X-Content-Type-Options: Prevents MIME sniffing
    - Referrer-Policy: Verification tokens must not leak via Referer
    - Cache-Control: API responses are never cached
    - Content-Security-Policy: API returns no HTML
    - Strict-Transport-Security: Forces HTTPS (production only)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Add security headers to response."""
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "no-referrer"

        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"

        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'"
        )

        # HSTS only in production (assumes HTTPS via reverse proxy)
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


def _error_response(exc: APIError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                details=exc.details,
            )
        ).model_dump(),
    )


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors with the standard error envelope."""
    return _error_response(exc)


def submission_rate_limited_handler(
    _request: Request, exc: RateLimitedError
) -> JSONResponse:
    """Handle per-identity submission limits with a Retry-After header."""
    response = _error_response(exc)
    response.headers["Retry-After"] = str(exc.retry_after)
    return response


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors from FastAPI.

    Converts FastAPI's validation errors to our standard format.
    """
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="VALIDATION_ERROR",
                message="Request validation failed",
                details=[
                    {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
                    for e in exc.errors()
                ],
            )
        ).model_dump(),
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions.

    WHY: Never expose internal error details to clients. Log for debugging.
    """
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="INTERNAL_ERROR",
                message="An unexpected error occurred",
            )
        ).model_dump(),
    )


def configure_logging(level: str) -> None:
    """Apply LOG_LEVEL to the package loggers and to structlog."""
    numeric = logging.getLevelNamesMapping()[level.upper()]
    logging.getLogger("review_verification").setLevel(numeric)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(numeric))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the cleanup loop; on shutdown stop it and flush the audit trail."""
    app_settings: Settings = app.state.settings
    scheduler: CleanupScheduler = app.state.cleanup_scheduler
    if app_settings.cleanup_enabled:
        scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        await app.state.audit.drain()
        if app.state.engine is not None:
            await app.state.engine.dispose()
        logger.info("shutdown_complete", audit_failures=app.state.audit.failure_count)


def create_app(
    *,
    app_settings: Settings | None = None,
    repository: TokenRepository | None = None,
    audit_sink: AuditSink | None = None,
    delivery: TokenDelivery | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    WHY FACTORY FUNCTION:
    - Enables testing with an in-memory store, fake clock and audit sink
    - One set of services per app instance, no module-level singletons
    - Clear separation between app creation and startup

    Args:
        app_settings: Settings to use. Defaults to the environment.
        repository: Token store. Defaults to the configured backend.
        audit_sink: Audit destination. Defaults to the JSON-lines file.
        delivery: Token delivery channel. Defaults to logging only.
        clock: Current-time source shared by all services.

    Returns:
        Configured FastAPI application instance.
    """
    cfg = app_settings or settings
    configure_logging(cfg.log_level)

    app = FastAPI(
        title="Portfolio Review Verification API",
        version="1.0.0",
        description="Email-verified testimonial submissions",
        lifespan=lifespan,
    )

    # Middleware order: Starlette uses LIFO, so the LAST added runs FIRST.
    # CORS must run first to handle preflight requests, so add it last.
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Authorization", "X-Request-ID"],
    )

    app.add_exception_handler(RateLimitedError, submission_rate_limited_handler)
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.state.limiter = limiter

    # Services
    engine = None
    if repository is None:
        if cfg.storage_backend == "database":
            engine = create_engine(cfg)
            repository = SqlTokenRepository(create_session_factory(engine))
        else:
            repository = InMemoryTokenRepository()

    audit = AuditLogger(
        audit_sink or JsonlAuditSink(cfg.audit_log_path),
        max_retries=cfg.audit_max_retries,
        retry_base_delay_ms=cfg.audit_retry_base_delay_ms,
        clock=clock,
    )
    token_service = TokenService(
        repository,
        audit,
        max_attempts=cfg.token_max_attempts,
        default_ttl_hours=cfg.token_ttl_hours,
        max_ttl_hours=cfg.cleanup_max_token_age_days * 24,
        clock=clock,
    )
    workflow = ReviewWorkflow(
        tokens=token_service,
        validator=SubmissionValidator(
            timestamp_window_seconds=cfg.submission_timestamp_window_seconds,
            trusted_domain_patterns=cfg.trusted_domain_patterns,
            trusted_relationships=cfg.trusted_relationships,
            clock=clock,
        ),
        rate_limiter=SubmissionRateLimiter(
            window_ms=cfg.submission_window_ms,
            max_submissions=cfg.submission_max_per_window,
        ),
        audit=audit,
        delivery=delivery or LoggingTokenDelivery(),
    )
    scheduler = CleanupScheduler(
        repository,
        audit,
        interval_seconds=cfg.cleanup_interval_seconds,
        grace_period=timedelta(hours=cfg.cleanup_grace_period_hours),
        max_age=timedelta(days=cfg.cleanup_max_token_age_days),
        clock=clock,
    )

    app.state.settings = cfg
    app.state.engine = engine
    app.state.audit = audit
    app.state.token_service = token_service
    app.state.workflow = workflow
    app.state.cleanup_scheduler = scheduler

    # Include v1 router at /api/v1
    app.include_router(v1_router, prefix="/api/v1")

    # Health check endpoint (outside versioned API)
    @app.get("/health")
    def health_check() -> dict:
        """Health check endpoint for monitoring.

        Returns:
            {"status": "healthy"} if service is running.
        """
        return {"status": "healthy"}

    return app


# Create the application instance
# Used by uvicorn: uvicorn review_verification.main:app
app = create_app()
