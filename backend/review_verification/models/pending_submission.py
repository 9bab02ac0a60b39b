"""Pending submission model - testimonial awaiting email verification.

Shares its primary key with the verification token. No foreign key: the
cleanup sweep removes rows whose token is gone (orphans).
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from review_verification.models.base import Base


class PendingSubmissionRow(Base):
    """Persisted pending submission.

    Attributes:
        token: Key shared with the verification token.
        review_id: Submission identifier.
        payload: Reviewer, content and metadata sections as JSON.
        created_at: Insert timestamp.
    """

    __tablename__ = "pending_submissions"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    review_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
