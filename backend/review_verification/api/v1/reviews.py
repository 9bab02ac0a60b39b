"""Public review endpoints.

POST /reviews/submit: accept a testimonial pending email verification
POST /reviews/verify: consume a verification token

Security: the submit response is identical for accepted and honeypot
submissions and never contains the token.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Body, Request, status

from review_verification.api.deps import ClientIp, Workflow
from review_verification.core.config import settings
from review_verification.core.errors import VerificationFailedError
from review_verification.core.rate_limiting import limiter
from review_verification.core.responses import DataResponse
from review_verification.schemas.reviews import (
    SubmissionAccepted,
    VerificationSucceeded,
    VerifyRequest,
)
from review_verification.services.token_types import TokenErrorKind

logger = structlog.get_logger()

router = APIRouter()

# Caller-visible verification failures. Distinct codes are kept on purpose
# for the portfolio UI; they do reveal token state to a guesser.
_VERIFICATION_ERRORS: dict[TokenErrorKind, tuple[str, str]] = {
    TokenErrorKind.NOT_FOUND: (
        "NOT_FOUND",
        "Verification link is invalid",
    ),
    TokenErrorKind.ALREADY_USED: (
        "ALREADY_USED",
        "This testimonial has already been verified",
    ),
    TokenErrorKind.EXPIRED: (
        "EXPIRED",
        "Verification link has expired. Please submit again.",
    ),
    TokenErrorKind.TOO_MANY_ATTEMPTS: (
        "TOO_MANY_ATTEMPTS",
        "Too many failed attempts for this verification link",
    ),
}


@router.post("/submit", status_code=status.HTTP_202_ACCEPTED)
async def submit_review(
    request: Request,
    payload: Annotated[dict[str, Any], Body()],
    workflow: Workflow,
    client_ip: ClientIp,
) -> DataResponse[SubmissionAccepted]:
    """Submit a testimonial for email verification.

    The raw body goes to the submission validator so the honeypot is
    checked before anything else.

    Raises:
        RateLimitedError: Too many submissions (429 with Retry-After).
        ValidationError / ContentSuspiciousError / UntrustedDomainError: 400.
        PersistenceError: Token storage unavailable (503).
    """
    outcome = await workflow.submit(
        payload,
        source_address=client_ip,
        user_agent=request.headers.get("User-Agent"),
    )
    if outcome.spam:
        logger.warning("review_submission_spam", client_ip=client_ip)
    else:
        logger.info("review_submitted", review_id=outcome.review_id)
    return DataResponse(data=SubmissionAccepted())


@router.post("/verify")
@limiter.limit(settings.rate_limit_verify)
async def verify_review(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: VerifyRequest,
    workflow: Workflow,
) -> DataResponse[VerificationSucceeded]:
    """Verify a testimonial with the token from the email.

    Rate limit: settings.rate_limit_verify per IP.

    Raises:
        VerificationFailedError: NOT_FOUND, ALREADY_USED, EXPIRED or
            TOO_MANY_ATTEMPTS (400).
    """
    outcome = await workflow.verify(
        body.token,
        str(body.email) if body.email is not None else None,
    )
    if not outcome.verified or outcome.review_id is None:
        kind = outcome.error or TokenErrorKind.NOT_FOUND
        code, message = _VERIFICATION_ERRORS[kind]
        logger.info("review_verification_failed", outcome=kind.value)
        raise VerificationFailedError(code=code, message=message)

    logger.info("review_verified", review_id=outcome.review_id)
    return DataResponse(data=VerificationSucceeded(review_id=outcome.review_id))
