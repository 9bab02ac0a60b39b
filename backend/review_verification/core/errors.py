"""API error classes.

Error taxonomy for the review verification service. Verification outcomes
(NotFound, AlreadyUsed, Expired, TooManyAttempts) are returned as typed
values by the token service; they only become exceptions at the HTTP edge
via VerificationFailedError.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Type-safe error handling in services/repositories
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for malformed or out-of-range submission input.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class ContentSuspiciousError(APIError):
    """Testimonial content matched a spam heuristic (400)."""

    def __init__(self, details: list[dict] | None = None) -> None:
        super().__init__(
            code="CONTENT_SUSPICIOUS",
            message="Submission content was rejected",
            status_code=400,
            details=details,
        )


class UntrustedDomainError(APIError):
    """Email domain not on the trusted allow-list (400).

    Raised for relationships that imply elevated trust (e.g. professor),
    where an institutional or organizational address is required.
    """

    def __init__(self) -> None:
        super().__init__(
            code="UNTRUSTED_DOMAIN",
            message="Please use an institutional or organizational email address",
            status_code=400,
        )


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Authenticated but not allowed (403)."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class AdminRequiredError(ForbiddenError):
    """Admin access required (403).

    Raised by the require_admin dependency when the JWT lacks the admin claim.
    """

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class VerificationFailedError(APIError):
    """Verification token rejected (400).

    The code carries the verification outcome kind, e.g. "ALREADY_USED".

    Args:
        code: Machine-readable outcome code.
        message: Human-readable message for the outcome.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=400,
        )


class RateLimitedError(APIError):
    """Too many submissions from one identifier (429).

    Attributes:
        retry_after: Seconds until another submission will be accepted.
    """

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            code="RATE_LIMITED",
            message="Too many submissions. Please try again later.",
            status_code=429,
            details=[{"retry_after": retry_after}],
        )


class PersistenceError(APIError):
    """Token store unavailable or write failed (503).

    Raised by repositories. During create_token it aborts the whole
    submission; during validation it is treated as NotFound.
    """

    def __init__(self, message: str = "Verification storage is unavailable") -> None:
        super().__init__(
            code="PERSISTENCE_ERROR",
            message=message,
            status_code=503,
        )


class CorruptRecordError(PersistenceError):
    """Stored token record could not be parsed.

    Args:
        key: Key of the unreadable record (only a prefix is kept).
    """

    def __init__(self, key: str) -> None:
        super().__init__(message=f"Stored record '{key[:8]}...' is unreadable")


class AuditWriteFailure(Exception):
    """An audit entry could not be written.

    Never propagates past the audit logger: the primary operation always
    proceeds and the failure is counted instead.
    """
