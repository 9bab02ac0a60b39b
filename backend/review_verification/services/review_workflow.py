"""Review submission workflow.

Orchestrates the three public operations of the service:

submit:  rate limit → validate → issue token with pending submission →
         hand the token to TokenDelivery
verify:  validate token → optional email match → consume token
admin:   record one AdminActionLog entry; reject/archive also revoke any
         still-valid token of the review

WHY A SEPARATE WORKFLOW:
- Routers stay thin (parse, call, map errors)
- Services stay single-purpose and individually testable
- The verification flow is the only place attempts are incremented
"""

import logging
import secrets
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, NoReturn

from review_verification.core.errors import (
    ContentSuspiciousError,
    RateLimitedError,
    UntrustedDomainError,
    ValidationError,
)
from review_verification.schemas.reviews import AdminAction, AdminActionLogEntry
from review_verification.services.audit_logger import (
    EVENT_SPAM_DETECTED,
    AuditEvent,
    AuditLogger,
)
from review_verification.services.submission_rate_limiter import (
    SubmissionRateLimiter,
)
from review_verification.services.submission_validator import (
    SanitizedSubmission,
    SubmissionValidator,
    ValidationIssue,
    ValidationIssueKind,
)
from review_verification.services.token_service import TokenService
from review_verification.services.token_types import (
    PendingSubmission,
    TokenErrorKind,
    evaluate,
    mask_token,
    normalize_email,
)

logger = logging.getLogger(__name__)

# secrets.token_urlsafe(9) yields 12 URL-safe characters
_REVIEW_ID_BYTES = 9

# Admin actions that take a review out of the verification pipeline
_REVOKING_ACTIONS: frozenset[str] = frozenset({"reject", "archive"})


def generate_review_id() -> str:
    """Return a fresh 12-character URL-safe review id."""
    return secrets.token_urlsafe(_REVIEW_ID_BYTES)


# =============================================================================
# Token delivery
# =============================================================================


class TokenDelivery(ABC):
    """Out-of-band channel that gets a token to the reviewer."""

    @abstractmethod
    async def deliver(
        self,
        *,
        email: str,
        name: str,
        token: str,
        review_id: str,
    ) -> None:
        """Send the verification token to the reviewer."""


class LoggingTokenDelivery(TokenDelivery):
    """Logs that a token is ready; sends nothing.

    Stand-in until an email provider is wired up. Only the masked prefix
    is logged.
    """

    async def deliver(
        self,
        *,
        email: str,
        name: str,  # noqa: ARG002
        token: str,
        review_id: str,
    ) -> None:
        logger.info(
            "Verification token %s ready for review %s (%s)",
            mask_token(token),
            review_id,
            email,
        )


# =============================================================================
# Outcomes
# =============================================================================


class SubmissionRejectedError(ValidationError):
    """Submission failed structural or freshness checks (400).

    Attributes:
        issues: The validator issues behind the rejection.
    """

    def __init__(self, issues: tuple[ValidationIssue, ...]) -> None:
        self.issues = issues
        super().__init__(
            message="Submission failed validation",
            details=[issue.to_detail() for issue in issues],
        )


@dataclass(frozen=True)
class SubmissionOutcome:
    """Result of submit().

    Callers must answer spam and accepted submissions identically; the
    spam flag is for logging and tests only.

    Attributes:
        review_id: Id of the pending review (None for spam).
        spam: True if the honeypot tripped.
    """

    review_id: str | None = None
    spam: bool = False


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of verify().

    Attributes:
        verified: True if the token was consumed by this call.
        review_id: Review that is now verified.
        error: Outcome kind when not verified.
        submission: Pending submission unlocked by the token.
    """

    verified: bool
    review_id: str | None = None
    error: TokenErrorKind | None = None
    submission: PendingSubmission | None = None


# =============================================================================
# Workflow
# =============================================================================


class ReviewWorkflow:
    """Submit, verify and moderate reviews.

    Args:
        tokens: Token issuer and validator.
        validator: Submission validator.
        rate_limiter: Per-identity submission limiter.
        audit: Audit logger.
        delivery: Token delivery channel.
    """

    def __init__(
        self,
        *,
        tokens: TokenService,
        validator: SubmissionValidator,
        rate_limiter: SubmissionRateLimiter,
        audit: AuditLogger,
        delivery: TokenDelivery,
    ) -> None:
        self.tokens = tokens
        self.validator = validator
        self.rate_limiter = rate_limiter
        self.audit = audit
        self.delivery = delivery

    async def submit(
        self,
        payload: Mapping[str, Any],
        *,
        source_address: str,
        user_agent: str | None = None,
    ) -> SubmissionOutcome:
        """Accept a testimonial for email verification.

        Args:
            payload: Raw request body.
            source_address: Client IP.
            user_agent: Client User-Agent header.

        Returns:
            SubmissionOutcome.

        Raises:
            RateLimitedError: Too many submissions from this IP or email.
            SubmissionRejectedError: Structural or freshness failure.
            ContentSuspiciousError: Spam heuristics tripped.
            UntrustedDomainError: Trusted relationship with an untrusted domain.
            PersistenceError: Token could not be stored.
        """
        self._check_rate(f"ip:{source_address}")

        result = self.validator.validate(payload)
        if result.is_spam:
            logger.warning("Honeypot tripped from %s", source_address)
            self.audit.append(
                AuditEvent(
                    event=EVENT_SPAM_DETECTED,
                    details={"sourceAddress": source_address},
                )
            )
            return SubmissionOutcome(spam=True)
        if result.sanitized is None:
            self._raise_for_issues(result.errors)
        sanitized = result.sanitized

        self._check_rate(f"email:{sanitized.email}")

        review_id = generate_review_id()
        pending = self._build_pending(
            sanitized,
            review_id=review_id,
            source_address=source_address,
            user_agent=user_agent,
        )
        token, _ = await self.tokens.create_token(
            sanitized.email,
            review_id,
            pending=pending,
        )
        await self.delivery.deliver(
            email=sanitized.email,
            name=sanitized.name,
            token=token,
            review_id=review_id,
        )
        return SubmissionOutcome(review_id=review_id)

    async def verify(self, token: str, email: str | None = None) -> VerificationOutcome:
        """Consume a token, optionally checking the claimed email.

        A mismatched email counts as a failed attempt and reports NotFound
        so the response does not confirm the token exists.
        """
        result = await self.tokens.validate_token(token)
        if not result.valid or result.record is None:
            return VerificationOutcome(verified=False, error=result.error)

        record = result.record
        if email is not None and normalize_email(email) != record.email:
            await self.tokens.increment_attempts(token)
            logger.info("Email mismatch verifying %s", mask_token(token))
            return VerificationOutcome(verified=False, error=TokenErrorKind.NOT_FOUND)

        used = await self.tokens.mark_used(token)
        if not used.ok:
            return VerificationOutcome(
                verified=False,
                error=used.error or TokenErrorKind.ALREADY_USED,
            )

        submission = await self.tokens.get_pending(token)
        logger.info("Review %s verified", record.review_id)
        return VerificationOutcome(
            verified=True,
            review_id=record.review_id,
            submission=submission,
        )

    async def apply_admin_action(
        self,
        *,
        action: AdminAction,
        review_id: str,
        performed_by: str,
        source_address: str,
        notes: str | None = None,
    ) -> AdminActionLogEntry:
        """Record an admin action, revoking open tokens on reject/archive.

        Returns:
            The AdminActionLog entry written for this call.
        """
        if action in _REVOKING_ACTIONS:
            reason = notes or f"review {action}"
            now = self.tokens.now()
            for record in await self.tokens.find_by_review_id(review_id):
                if evaluate(record, now, self.tokens.max_attempts) is not None:
                    continue
                await self.tokens.revoke(record.token, reason)

        entry = self.audit.record_admin_action(
            action=action,
            review_id=review_id,
            performed_by=performed_by,
            source_address=source_address,
            notes=notes,
        )
        logger.info("Admin %s applied %s to review %s", performed_by, action, review_id)
        return entry

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_rate(self, identifier: str) -> None:
        decision = self.rate_limiter.check(identifier)
        if not decision.allowed:
            raise RateLimitedError(retry_after=decision.retry_after)

    @staticmethod
    def _raise_for_issues(issues: tuple[ValidationIssue, ...]) -> NoReturn:
        kinds = {issue.kind for issue in issues}
        if ValidationIssueKind.CONTENT_SUSPICIOUS in kinds:
            raise ContentSuspiciousError()
        if ValidationIssueKind.UNTRUSTED_DOMAIN in kinds:
            raise UntrustedDomainError()
        raise SubmissionRejectedError(issues)

    def _build_pending(
        self,
        sanitized: SanitizedSubmission,
        *,
        review_id: str,
        source_address: str,
        user_agent: str | None,
    ) -> PendingSubmission:
        return PendingSubmission(
            token="",
            review_id=review_id,
            reviewer=sanitized.reviewer,
            content=sanitized.content,
            metadata={
                "submittedAt": self.tokens.now().isoformat(),
                "source": sanitized.source,
                "status": sanitized.status,
                "clientTimestamp": sanitized.client_timestamp,
                "ipAddress": source_address,
                "userAgent": user_agent,
            },
        )
