import asyncio
import socket
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import create_async_engine

from review_verification.core.auth import ADMIN_AUDIENCE
from review_verification.core.config import Settings, settings
from review_verification.models.base import Base
from review_verification.repositories.token_repository import InMemoryTokenRepository
from review_verification.services.audit_logger import AuditLogger, InMemoryAuditSink
from review_verification.services.review_workflow import TokenDelivery
from review_verification.services.token_service import TokenService
from review_verification.services.token_types import TokenRecord, VersionedRecord

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow

TEST_ADMIN = "owner@example.com"

# Fixed start time so expiry arithmetic is deterministic
BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

_FILLER = "Dana is a thoughtful engineer who ships reliable, well tested work. "


class FakeClock:
    """Settable clock shared by every service under test."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)

    def epoch_ms(self) -> int:
        return int(self.current.timestamp() * 1000)


class RecordingTokenDelivery(TokenDelivery):
    """Captures delivered tokens instead of emailing them."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []

    async def deliver(
        self,
        *,
        email: str,
        name: str,
        token: str,
        review_id: str,
    ) -> None:
        self.sent.append(
            {"email": email, "name": name, "token": token, "review_id": review_id}
        )

    @property
    def last_token(self) -> str:
        return self.sent[-1]["token"]


class InterleavingRepository(InMemoryTokenRepository):
    """Yields to the event loop between read and write.

    Forces concurrent read-modify-write cycles to overlap, which is exactly
    the schedule that loses updates without compare-and-swap.
    """

    def __init__(self) -> None:
        super().__init__()
        self.cas_failures = 0

    async def get(self, token: str) -> VersionedRecord | None:
        loaded = await super().get(token)
        await asyncio.sleep(0)
        return loaded

    async def compare_and_swap(
        self, token: str, expected_version: int, record: TokenRecord
    ) -> bool:
        swapped = await super().compare_and_swap(token, expected_version, record)
        if not swapped:
            self.cas_failures += 1
        return swapped


def make_text(length: int) -> str:
    """Return clean prose of exactly ``length`` characters after stripping."""
    text = (_FILLER * (length // len(_FILLER) + 1))[:length]
    if text[-1] == " ":
        text = text[:-1] + "x"
    return text


def make_submission(clock: FakeClock, **overrides: Any) -> dict[str, Any]:
    """Build a valid camelCase submission payload stamped at clock time."""
    payload: dict[str, Any] = {
        "name": "Ada Lovelace",
        "email": "Ada@Example.com",
        "title": "Engineering Manager",
        "organization": "Analytical Engines Ltd",
        "relationship": "colleague",
        "rating": 5,
        "testimonial": make_text(120),
        "projectAssociation": "Difference Engine",
        "skills": ["Python", "Testing"],
        "highlights": ["Clear communicator"],
        "recommendation": True,
        "workPeriod": {"start": "2023-01-01", "end": "2024-06-30"},
        "source": "direct",
        "honeypot": "",
        "clientTimestamp": clock.epoch_ms(),
    }
    payload.update(overrides)
    return payload


def create_test_admin_jwt(
    subject: str = TEST_ADMIN,
    *,
    secret: str = TEST_AUTH_SECRET,
    admin: bool = True,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed admin JWT for test authentication.

    Args:
        subject: Admin identity for the sub claim.
        secret: Signing secret (must match settings.auth_secret in tests).
        admin: Value of the adm claim.
        expires_delta: Time until expiration. Defaults to 1 hour.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": subject,
        "aud": ADMIN_AUDIENCE,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": now,
        "adm": admin,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections on port 5432."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available."""
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def audit_logger(audit_sink: InMemoryAuditSink, clock: FakeClock) -> AuditLogger:
    return AuditLogger(audit_sink, max_retries=3, retry_base_delay_ms=0, clock=clock)


@pytest.fixture
def token_repository() -> InMemoryTokenRepository:
    return InMemoryTokenRepository()


@pytest.fixture
def token_service(
    token_repository: InMemoryTokenRepository,
    audit_logger: AuditLogger,
    clock: FakeClock,
) -> TokenService:
    return TokenService(token_repository, audit_logger, clock=clock)


@pytest.fixture
def delivery() -> RecordingTokenDelivery:
    return RecordingTokenDelivery()


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest.fixture
def app(
    clock: FakeClock,
    token_repository: InMemoryTokenRepository,
    audit_sink: InMemoryAuditSink,
    delivery: RecordingTokenDelivery,
) -> FastAPI:
    """App wired to the in-memory store, fake clock and recording delivery."""
    from review_verification.main import create_app

    return create_app(
        app_settings=Settings(
            cleanup_enabled=False,
            audit_retry_base_delay_ms=0,
        ),
        repository=token_repository,
        audit_sink=audit_sink,
        delivery=delivery,
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client without admin credentials."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_secret() -> Iterator[str]:
    """Configure the admin JWT secret for the duration of a test."""
    original_auth_secret = settings.auth_secret
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    yield TEST_AUTH_SECRET
    settings.auth_secret = original_auth_secret


@pytest_asyncio.fixture
async def admin_client(
    app: FastAPI,
    admin_secret: str,  # noqa: ARG001 - configures settings.auth_secret
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client carrying a valid admin bearer token."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {create_test_admin_jwt()}"},
    ) as ac:
        yield ac


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# =============================================================================
# Autouse Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable slowapi request limiting during tests.

    Security: Rate limiting is tested separately; disable for other tests
    to avoid flaky failures from rate limit triggers.
    """
    from review_verification.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False

    yield

    limiter.enabled = original_enabled
