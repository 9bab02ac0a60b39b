"""Pydantic request/response schemas for API endpoints."""

from review_verification.schemas.reviews import (
    AdminActionLogEntry,
    AdminActionRequest,
    CleanupResponse,
    ReviewSubmissionInput,
    SubmissionAccepted,
    TokenStatsResponse,
    VerificationSucceeded,
    VerifyRequest,
)

__all__ = [
    "AdminActionLogEntry",
    "AdminActionRequest",
    "CleanupResponse",
    "ReviewSubmissionInput",
    "SubmissionAccepted",
    "TokenStatsResponse",
    "VerificationSucceeded",
    "VerifyRequest",
]
