"""Verification token issue, validation and lifecycle mutations.

Tokens are 256-bit secrets rendered as 64 lowercase hex characters. Each
token proves control of one email address for one pending review.

Routine outcomes (NotFound, AlreadyUsed, Expired, TooManyAttempts) come
back as TokenErrorKind values. Only storage failures during a write raise.

Concurrency: every mutation is a compare-and-swap loop against the
repository, so two concurrent increments on one token both land. Reads
decide on an immutable snapshot with no lock held.
"""

import logging
import re
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from review_verification.core.errors import PersistenceError
from review_verification.repositories.token_repository import TokenRepository
from review_verification.services.audit_logger import (
    EVENT_TOKEN_ATTEMPT,
    EVENT_TOKEN_CREATED,
    EVENT_TOKEN_REVOKED,
    EVENT_TOKEN_USED,
    AuditLogger,
)
from review_verification.services.token_types import (
    TOKEN_BYTES,
    PendingSubmission,
    TokenErrorKind,
    TokenMutationResult,
    TokenRecord,
    TokenStats,
    TokenValidationResult,
    evaluate,
    mask_token,
    normalize_email,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_TTL_HOURS = 24
# Cleanup deletes tokens older than this regardless of expiry
DEFAULT_MAX_TTL_HOURS = 7 * 24

# Lost compare-and-swap races tolerated before giving up
_MAX_CAS_RETRIES = 16

_TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def is_well_formed_token(token: object) -> bool:
    """True if token is exactly 64 lowercase hex characters."""
    return isinstance(token, str) and _TOKEN_PATTERN.fullmatch(token) is not None


class TokenService:
    """Issues and validates verification tokens.

    One instance per process (or per test); it holds no global state of its
    own beyond the injected collaborators.

    Args:
        repository: Token store.
        audit: Audit logger for lifecycle events.
        max_attempts: Failed attempts before a token is exhausted.
        default_ttl_hours: TTL used when create_token is not given one.
        max_ttl_hours: Longest TTL create_token accepts.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: TokenRepository,
        audit: AuditLogger,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        default_ttl_hours: int = DEFAULT_TTL_HOURS,
        max_ttl_hours: int = DEFAULT_MAX_TTL_HOURS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.audit = audit
        self.max_attempts = max_attempts
        self.default_ttl_hours = default_ttl_hours
        self.max_ttl_hours = max_ttl_hours
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # Issue
    # =========================================================================

    async def create_token(
        self,
        email: str,
        review_id: str,
        ttl_hours: int | None = None,
        pending: PendingSubmission | None = None,
    ) -> tuple[str, TokenRecord]:
        """Issue a token and store it with its pending submission.

        Args:
            email: Address the token proves control of.
            review_id: Pending review the token unlocks.
            ttl_hours: Lifetime; defaults to default_ttl_hours.
            pending: Submission to store under the token. An empty one is
                stored when omitted so the pair invariant still holds.

        Returns:
            Tuple of (token, stored record).

        Raises:
            ValueError: If ttl_hours is not positive or exceeds max_ttl_hours.
            PersistenceError: If the write fails. Nothing is stored.
        """
        ttl = self.default_ttl_hours if ttl_hours is None else ttl_hours
        if ttl <= 0:
            msg = f"ttl_hours must be positive. Got: {ttl}"
            raise ValueError(msg)
        if ttl > self.max_ttl_hours:
            msg = f"ttl_hours must not exceed {self.max_ttl_hours}. Got: {ttl}"
            raise ValueError(msg)

        token = secrets.token_hex(TOKEN_BYTES)
        created_at = self.now()
        record = TokenRecord(
            token=token,
            email=normalize_email(email),
            review_id=review_id,
            created_at=created_at,
            expires_at=created_at + timedelta(hours=ttl),
        )
        stored_pending = PendingSubmission(
            token=token,
            review_id=review_id,
            reviewer=dict(pending.reviewer) if pending else {},
            content=dict(pending.content) if pending else {},
            metadata=dict(pending.metadata) if pending else {},
        )

        await self.repository.put(record, stored_pending)

        logger.info(
            "Issued verification token %s for review %s",
            mask_token(token),
            review_id,
        )
        self.audit.token_event(
            EVENT_TOKEN_CREATED,
            token,
            email=record.email,
            review_id=review_id,
            expires_at=record.expires_at,
        )
        return token, record

    # =========================================================================
    # Read
    # =========================================================================

    async def validate_token(self, token: str) -> TokenValidationResult:
        """Check whether a token may be consumed right now.

        Read-only: never changes attempts or used. Malformed tokens and
        unreadable storage both report NotFound without further detail.

        Args:
            token: Candidate token string.

        Returns:
            TokenValidationResult with the loaded snapshot when one exists.
        """
        if not is_well_formed_token(token):
            return TokenValidationResult(valid=False, error=TokenErrorKind.NOT_FOUND)

        try:
            loaded = await self.repository.get(token)
        except PersistenceError as exc:
            logger.warning(
                "Token read failed for %s, denying: %s", mask_token(token), exc
            )
            return TokenValidationResult(valid=False, error=TokenErrorKind.NOT_FOUND)

        record = loaded.record if loaded else None
        error = evaluate(record, self.now(), self.max_attempts)
        return TokenValidationResult(valid=error is None, record=record, error=error)

    async def get_pending(self, token: str) -> PendingSubmission | None:
        """Load the submission stored under a token (None when malformed)."""
        if not is_well_formed_token(token):
            return None
        return await self.repository.get_pending(token)

    async def find_by_email(self, email: str) -> list[TokenRecord]:
        """Return every readable token for an address, newest first."""
        target = normalize_email(email)
        records = await self._load_all()
        matches = [r for r in records if r.email == target]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def find_by_review_id(self, review_id: str) -> list[TokenRecord]:
        """Return every readable token for a review, newest first."""
        records = await self._load_all()
        matches = [r for r in records if r.review_id == review_id]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def get_stats(self) -> TokenStats:
        """Count tokens by state.

        Used wins over expired; expired wins over exhausted.
        """
        now = self.now()
        total = active = expired = used = exhausted = 0
        for record in await self._load_all():
            total += 1
            outcome = evaluate(record, now, self.max_attempts)
            if outcome is TokenErrorKind.ALREADY_USED:
                used += 1
            elif outcome is TokenErrorKind.EXPIRED:
                expired += 1
            elif outcome is TokenErrorKind.TOO_MANY_ATTEMPTS:
                exhausted += 1
            else:
                active += 1
        return TokenStats(
            total=total,
            active=active,
            expired=expired,
            used=used,
            exhausted=exhausted,
        )

    async def _load_all(self) -> list[TokenRecord]:
        records: list[TokenRecord] = []
        for key in await self.repository.scan_keys():
            try:
                loaded = await self.repository.get(key)
            except PersistenceError:
                # Left for the cleanup sweep
                continue
            if loaded is not None:
                records.append(loaded.record)
        return records

    # =========================================================================
    # Mutations
    # =========================================================================

    async def mark_used(self, token: str) -> TokenMutationResult:
        """Consume a token (used: False → True).

        Returns:
            ok=True with the updated record, or ok=False with the
            kind that makes the current snapshot invalid. Validity is
            re-checked on every swap attempt, so a token exhausted or
            expired since the caller last looked is never consumed.
        """

        def consume(record: TokenRecord) -> TokenRecord | TokenErrorKind:
            error = evaluate(record, self.now(), self.max_attempts)
            if error is not None:
                return error
            return record.with_changes(used=True)

        result = await self._mutate(token, consume)
        if result.ok and result.record is not None:
            self.audit.token_event(
                EVENT_TOKEN_USED,
                token,
                email=result.record.email,
                review_id=result.record.review_id,
            )
        return result

    async def increment_attempts(self, token: str) -> TokenMutationResult:
        """Record one failed verification attempt.

        Applies to any existing token; attempts never decrease.
        """

        def bump(record: TokenRecord) -> TokenRecord:
            return record.with_changes(attempts=record.attempts + 1)

        result = await self._mutate(token, bump)
        if result.ok and result.record is not None:
            self.audit.token_event(
                EVENT_TOKEN_ATTEMPT,
                token,
                email=result.record.email,
                review_id=result.record.review_id,
                attempts=result.record.attempts,
            )
        return result

    async def revoke(self, token: str, reason: str) -> TokenMutationResult:
        """Make a token permanently unusable.

        Sets used=True and raises attempts to max_attempts (never lowers
        them). Revoking an already-used token reports AlreadyUsed.
        """

        def invalidate(record: TokenRecord) -> TokenRecord | TokenErrorKind:
            if record.used:
                return TokenErrorKind.ALREADY_USED
            return record.with_changes(
                used=True,
                attempts=max(record.attempts, self.max_attempts),
            )

        result = await self._mutate(token, invalidate)
        if result.ok and result.record is not None:
            logger.info("Revoked token %s: %s", mask_token(token), reason)
            self.audit.token_event(
                EVENT_TOKEN_REVOKED,
                token,
                email=result.record.email,
                review_id=result.record.review_id,
                reason=reason,
            )
        return result

    async def _mutate(
        self,
        token: str,
        change: Callable[[TokenRecord], TokenRecord | TokenErrorKind],
    ) -> TokenMutationResult:
        """Apply change() atomically via compare-and-swap.

        Raises:
            PersistenceError: If storage fails or the record keeps changing
                underneath us for _MAX_CAS_RETRIES rounds.
        """
        if not is_well_formed_token(token):
            return TokenMutationResult(ok=False, error=TokenErrorKind.NOT_FOUND)

        for _ in range(_MAX_CAS_RETRIES):
            loaded = await self.repository.get(token)
            if loaded is None:
                return TokenMutationResult(ok=False, error=TokenErrorKind.NOT_FOUND)

            updated = change(loaded.record)
            if isinstance(updated, TokenErrorKind):
                return TokenMutationResult(
                    ok=False, record=loaded.record, error=updated
                )

            if await self.repository.compare_and_swap(token, loaded.version, updated):
                return TokenMutationResult(ok=True, record=updated)

            logger.debug("CAS conflict on %s, retrying", mask_token(token))

        logger.error(
            "Gave up updating %s after %d conflicts",
            mask_token(token),
            _MAX_CAS_RETRIES,
        )
        raise PersistenceError("Token is under heavy contention")
