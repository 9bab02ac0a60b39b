"""Verification token model.

Single-use, time-limited email verification tokens gating testimonial
submissions. Keyed by the token itself; ``version`` backs compare-and-swap
updates so concurrent attempt increments never overwrite each other.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from review_verification.models.base import Base


class VerificationTokenRow(Base):
    """Persisted verification token.

    Attributes:
        token: 64-char hex secret (primary key).
        email: Normalized email address.
        review_id: Paired pending submission.
        created_at: Issue timestamp.
        expires_at: Expiry timestamp.
        used: Explicit terminal flag.
        attempts: Failed verification attempts.
        version: Incremented on every update (compare-and-swap guard).
    """

    __tablename__ = "verification_tokens"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(254), nullable=False, index=True)
    review_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    used: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("0"),
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("1"),
    )
