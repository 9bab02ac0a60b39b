"""Verification token type definitions.

Token state machine:
- Pending → Used (explicit, used=True)
- Pending → Revoked (explicit, used=True + attempts=max, audit trail only)
- Pending → Expired (derived from now > expires_at)
- Pending → AttemptsExhausted (derived from attempts >= max_attempts)

Derived states are never stored; evaluate() computes them from a record
snapshot and the current time, so nothing has to run in the background to
"expire" a token. No state ever returns to Pending.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

# 32 random bytes rendered as lowercase hex
TOKEN_BYTES = 32
TOKEN_LENGTH = TOKEN_BYTES * 2

# Characters of a token that may appear in logs and audit entries
TOKEN_LOG_PREFIX_LENGTH = 8


def mask_token(token: str) -> str:
    """Return a log-safe token prefix such as ``"a1b2c3d4..."``."""
    return f"{token[:TOKEN_LOG_PREFIX_LENGTH]}..."


def normalize_email(email: str) -> str:
    """Lower-case and trim an email address."""
    return email.strip().lower()


# =============================================================================
# Outcome kinds
# =============================================================================


class TokenErrorKind(Enum):
    """Routine verification outcomes, returned as values (never raised).

    Listed in evaluation precedence order.
    """

    NOT_FOUND = "NotFound"
    ALREADY_USED = "AlreadyUsed"
    EXPIRED = "Expired"
    TOO_MANY_ATTEMPTS = "TooManyAttempts"


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class TokenRecord:
    """One pending identity proof.

    Attributes:
        token: 64-char hex secret, primary key.
        email: Normalized address the token proves control of.
        review_id: Paired pending submission.
        created_at: Issue time (UTC).
        expires_at: created_at + ttl (UTC).
        used: Explicit terminal flag; only ever goes False → True.
        attempts: Failed verification attempts; never decreases.
    """

    token: str
    email: str
    review_id: str
    created_at: datetime
    expires_at: datetime
    used: bool = False
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted token record shape."""
        return {
            "token": self.token,
            "email": self.email,
            "reviewId": self.review_id,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "used": self.used,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenRecord":
        """Parse a persisted token record.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        try:
            used = data["used"]
            attempts = data["attempts"]
            if not isinstance(used, bool):
                raise TypeError("used must be a bool")
            if not isinstance(attempts, int) or isinstance(attempts, bool):
                raise TypeError("attempts must be an int")
            return cls(
                token=str(data["token"]),
                email=str(data["email"]),
                review_id=str(data["reviewId"]),
                created_at=datetime.fromisoformat(data["createdAt"]),
                expires_at=datetime.fromisoformat(data["expiresAt"]),
                used=used,
                attempts=attempts,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed token record: {exc}") from exc

    def with_changes(self, **changes: Any) -> "TokenRecord":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class VersionedRecord:
    """A token record together with its compare-and-swap version."""

    record: TokenRecord
    version: int


@dataclass(frozen=True)
class PendingSubmission:
    """Reviewer profile and testimonial awaiting verification.

    Keyed by the same token as its VerificationToken and destroyed with it.
    """

    token: str
    review_id: str
    reviewer: dict[str, Any]
    content: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage."""
        return {
            "token": self.token,
            "reviewId": self.review_id,
            "reviewer": self.reviewer,
            "content": self.content,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingSubmission":
        """Parse a stored pending submission.

        Raises:
            ValueError: If a required field is missing.
        """
        try:
            return cls(
                token=str(data["token"]),
                review_id=str(data["reviewId"]),
                reviewer=dict(data["reviewer"]),
                content=dict(data["content"]),
                metadata=dict(data.get("metadata") or {}),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed pending submission: {exc}") from exc


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class TokenValidationResult:
    """Result of validate_token.

    Attributes:
        valid: True only if the token may be consumed right now.
        record: Loaded snapshot (None when not found or malformed).
        error: Outcome kind when invalid.
    """

    valid: bool
    record: TokenRecord | None = None
    error: TokenErrorKind | None = None


@dataclass(frozen=True)
class TokenMutationResult:
    """Result of mark_used / increment_attempts / revoke.

    Attributes:
        ok: True if the mutation was applied.
        record: Record after the mutation (or the current one on failure).
        error: Outcome kind when not applied.
    """

    ok: bool
    record: TokenRecord | None = None
    error: TokenErrorKind | None = None


@dataclass(frozen=True)
class TokenStats:
    """Point-in-time token counts.

    A used token counts as used regardless of expiry; an unused one counts
    as expired, exhausted, or active in that order.
    """

    total: int = 0
    active: int = 0
    expired: int = 0
    used: int = 0
    exhausted: int = 0


# =============================================================================
# Decision function
# =============================================================================


def evaluate(
    record: TokenRecord | None,
    now: datetime,
    max_attempts: int,
) -> TokenErrorKind | None:
    """Decide whether a token snapshot is valid at ``now``.

    Precedence: NotFound → AlreadyUsed → Expired → TooManyAttempts. Explicit
    state (used) outranks derived state (expiry, attempts).

    Args:
        record: Snapshot to evaluate, or None if nothing is stored.
        now: Current time (timezone-aware).
        max_attempts: Attempt ceiling.

    Returns:
        None if valid, otherwise the first failing outcome kind.
    """
    if record is None:
        return TokenErrorKind.NOT_FOUND
    if record.used:
        return TokenErrorKind.ALREADY_USED
    if now > record.expires_at:
        return TokenErrorKind.EXPIRED
    if record.attempts >= max_attempts:
        return TokenErrorKind.TOO_MANY_ATTEMPTS
    return None
