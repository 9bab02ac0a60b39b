"""SQLAlchemy ORM models for the review verification service.

- verification_token.py: VerificationTokenRow
- pending_submission.py: PendingSubmissionRow
"""

from review_verification.models.base import Base
from review_verification.models.pending_submission import PendingSubmissionRow
from review_verification.models.verification_token import VerificationTokenRow

__all__ = [
    "Base",
    "PendingSubmissionRow",
    "VerificationTokenRow",
]
