"""Create verification token and pending submission tables.

Revision ID: 001_review_verification
Revises:
Create Date: 2026-10-19

verification_tokens: one row per issued token, CAS-guarded by version
pending_submissions: testimonial payload keyed by the same token
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_review_verification"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Token value is the primary key: lookups are by exact index, never a scan
    op.create_table(
        "verification_tokens",
        sa.Column("token", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("review_id", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("attempts >= 0", name="ck_verification_tokens_attempts"),
        sa.CheckConstraint(
            "expires_at > created_at", name="ck_verification_tokens_expiry"
        ),
    )
    op.create_index(
        "ix_verification_tokens_email", "verification_tokens", ["email"]
    )
    op.create_index(
        "ix_verification_tokens_review_id", "verification_tokens", ["review_id"]
    )

    # No FK to verification_tokens: orphans are removed by the cleanup sweep
    op.create_table(
        "pending_submissions",
        sa.Column("token", sa.String(64), primary_key=True),
        sa.Column("review_id", sa.String(32), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_pending_submissions_review_id", "pending_submissions", ["review_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_pending_submissions_review_id", table_name="pending_submissions")
    op.drop_table("pending_submissions")
    op.drop_index("ix_verification_tokens_review_id", table_name="verification_tokens")
    op.drop_index("ix_verification_tokens_email", table_name="verification_tokens")
    op.drop_table("verification_tokens")
