"""Submission validation: honeypot, structure, freshness, content, domain.

Checks run in a fixed order and stop at the first failing stage:

1. Honeypot: a filled hidden field means a bot; nothing else is checked.
2. Structure: ReviewSubmissionInput (types, lengths, enums, patterns).
3. Freshness: clientTimestamp must be within the replay window.
4. Content heuristics: repeated characters, links, prices, sales verbs.
5. Trusted domain: elevated-trust relationships need an allow-listed domain.

Issues are returned as values. The workflow decides how each kind surfaces
over HTTP; SpamDetected in particular is never shown to the submitter.
"""

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from review_verification.schemas.reviews import ReviewSubmissionInput
from review_verification.services.token_types import normalize_email

logger = logging.getLogger(__name__)

DEFAULT_TIMESTAMP_WINDOW_SECONDS = 300
DEFAULT_TRUSTED_DOMAIN_PATTERNS = (r"\.edu$", r"\.ac\.uk$", r"\.edu\.au$", r"\.org$")
DEFAULT_TRUSTED_RELATIONSHIPS = ("professor", "supervisor")

# Content heuristics, applied to testimonial and highlights
_SUSPICIOUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("repeated characters", re.compile(r"(.)\1{9,}")),
    ("embedded link", re.compile(r"https?://|www\.", re.IGNORECASE)),
    (
        "currency amount",
        re.compile(r"[$€£]\s?\d|\b\d+\s?(usd|dollars|eur)\b", re.IGNORECASE),
    ),
    ("sales language", re.compile(r"\b(buy|sell|click|visit)\b", re.IGNORECASE)),
)


class ValidationIssueKind(Enum):
    """Why a submission was refused."""

    VALIDATION_ERROR = "ValidationError"
    CONTENT_SUSPICIOUS = "ContentSuspicious"
    UNTRUSTED_DOMAIN = "UntrustedDomain"
    SPAM_DETECTED = "SpamDetected"


@dataclass(frozen=True)
class ValidationIssue:
    """One refusal reason.

    Attributes:
        kind: Issue category.
        field: Offending field (camelCase), empty for whole-payload issues.
        message: Human-readable description.
    """

    kind: ValidationIssueKind
    field: str
    message: str

    def to_detail(self) -> dict[str, str]:
        """Render for the error envelope's details list."""
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True)
class SanitizedSubmission:
    """Validated submission with trimmed strings and a normalized email.

    Attributes:
        reviewer: name, email, title, organization, relationship, linkedinUrl.
        content: rating, testimonial, projectAssociation, skills,
            recommendation, highlights, workPeriod.
        source: Submission channel.
        client_timestamp: Client clock at submission (epoch ms).
        status: Always "pending" regardless of what the client sent.
    """

    reviewer: dict[str, Any]
    content: dict[str, Any]
    source: str
    client_timestamp: int
    status: str = "pending"

    @property
    def email(self) -> str:
        return str(self.reviewer["email"])

    @property
    def name(self) -> str:
        return str(self.reviewer["name"])


@dataclass(frozen=True)
class SubmissionValidationResult:
    """Outcome of SubmissionValidator.validate.

    Attributes:
        sanitized: Cleaned submission, None when any issue was found.
        errors: Issues found by the first failing stage.
    """

    sanitized: SanitizedSubmission | None = None
    errors: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        return self.sanitized is not None and not self.errors

    @property
    def is_spam(self) -> bool:
        return any(e.kind is ValidationIssueKind.SPAM_DETECTED for e in self.errors)


def _loc_to_field(loc: tuple[int | str, ...]) -> str:
    return ".".join(str(part) for part in loc)


def find_suspicious_content(texts: Iterable[str]) -> str | None:
    """Return the name of the first heuristic any text trips, or None."""
    for text in texts:
        for name, pattern in _SUSPICIOUS_PATTERNS:
            if pattern.search(text):
                return name
    return None


class SubmissionValidator:
    """Validates and sanitizes raw submission payloads.

    Args:
        timestamp_window_seconds: Max allowed |server - client| clock skew.
        trusted_domain_patterns: Regexes matched against the email domain.
        trusted_relationships: Relationships that require a trusted domain.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        *,
        timestamp_window_seconds: int = DEFAULT_TIMESTAMP_WINDOW_SECONDS,
        trusted_domain_patterns: Iterable[str] = DEFAULT_TRUSTED_DOMAIN_PATTERNS,
        trusted_relationships: Iterable[str] = DEFAULT_TRUSTED_RELATIONSHIPS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._window_ms = timestamp_window_seconds * 1000
        self._domain_patterns = [
            re.compile(p, re.IGNORECASE) for p in trusted_domain_patterns
        ]
        self._trusted_relationships = frozenset(trusted_relationships)
        self._clock = clock or (lambda: datetime.now(UTC))

    def validate(
        self,
        payload: Mapping[str, Any],
        *,
        trusted: bool | None = None,
    ) -> SubmissionValidationResult:
        """Run every check against a raw payload.

        Args:
            payload: Decoded request body (camelCase or snake_case keys).
            trusted: Force trusted-domain mode on or off. None derives it
                from the relationship.

        Returns:
            SubmissionValidationResult with either sanitized data or issues.
        """
        honeypot = payload.get("honeypot")
        if honeypot is not None and str(honeypot).strip():
            return SubmissionValidationResult(
                errors=(
                    ValidationIssue(
                        kind=ValidationIssueKind.SPAM_DETECTED,
                        field="honeypot",
                        message="Hidden field was filled",
                    ),
                )
            )

        try:
            parsed = ReviewSubmissionInput.model_validate(dict(payload))
        except PydanticValidationError as exc:
            return SubmissionValidationResult(
                errors=tuple(
                    ValidationIssue(
                        kind=ValidationIssueKind.VALIDATION_ERROR,
                        field=_loc_to_field(err["loc"]),
                        message=err["msg"],
                    )
                    for err in exc.errors()
                )
            )

        issue = (
            self._check_freshness(parsed.client_timestamp)
            or self._check_content(parsed)
            or self._check_domain(parsed, trusted)
        )
        if issue is not None:
            return SubmissionValidationResult(errors=(issue,))

        return SubmissionValidationResult(sanitized=self._sanitize(parsed))

    def _check_freshness(self, client_timestamp: int) -> ValidationIssue | None:
        now_ms = int(self._clock().timestamp() * 1000)
        if abs(now_ms - client_timestamp) <= self._window_ms:
            return None
        return ValidationIssue(
            kind=ValidationIssueKind.VALIDATION_ERROR,
            field="clientTimestamp",
            message="Submission timestamp is outside the allowed window",
        )

    def _check_content(self, parsed: ReviewSubmissionInput) -> ValidationIssue | None:
        matched = find_suspicious_content([parsed.testimonial, *parsed.highlights])
        if matched is None:
            return None
        logger.info("Submission rejected by content heuristic: %s", matched)
        return ValidationIssue(
            kind=ValidationIssueKind.CONTENT_SUSPICIOUS,
            field="testimonial",
            message="Content appears to be promotional or automated",
        )

    def _check_domain(
        self,
        parsed: ReviewSubmissionInput,
        trusted: bool | None,
    ) -> ValidationIssue | None:
        required = (
            trusted
            if trusted is not None
            else parsed.relationship in self._trusted_relationships
        )
        if not required:
            return None

        domain = normalize_email(parsed.email).rsplit("@", 1)[-1]
        if any(p.search(domain) for p in self._domain_patterns):
            return None
        return ValidationIssue(
            kind=ValidationIssueKind.UNTRUSTED_DOMAIN,
            field="email",
            message="Email domain is not on the trusted list",
        )

    @staticmethod
    def _sanitize(parsed: ReviewSubmissionInput) -> SanitizedSubmission:
        data = parsed.model_dump(mode="json", by_alias=True)
        return SanitizedSubmission(
            reviewer={
                "name": data["name"],
                "email": normalize_email(parsed.email),
                "title": data["title"],
                "organization": data["organization"],
                "relationship": data["relationship"],
                "linkedinUrl": data["linkedinUrl"],
            },
            content={
                "rating": data["rating"],
                "testimonial": data["testimonial"],
                "projectAssociation": data["projectAssociation"],
                "skills": data["skills"],
                "recommendation": data["recommendation"],
                "highlights": data["highlights"],
                "workPeriod": data["workPeriod"],
            },
            source=data["source"],
            client_timestamp=data["clientTimestamp"],
        )
