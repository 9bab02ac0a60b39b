"""PostgreSQL-backed token store.

Implements TokenRepository over SQLAlchemy async sessions. Compare-and-swap
is a single conditional UPDATE on (token, version); the database row lock
taken by that statement serializes concurrent writers on one token while
leaving other tokens uncontended.
"""

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from review_verification.core.errors import CorruptRecordError, PersistenceError
from review_verification.models.pending_submission import PendingSubmissionRow
from review_verification.models.verification_token import VerificationTokenRow
from review_verification.repositories.token_repository import TokenRepository
from review_verification.services.token_types import (
    PendingSubmission,
    TokenRecord,
    VersionedRecord,
    mask_token,
)

logger = logging.getLogger(__name__)


def _row_to_record(row: VerificationTokenRow) -> TokenRecord:
    """Convert a row to a TokenRecord, rejecting impossible values."""
    if row.attempts is None or row.attempts < 0 or row.used is None:
        raise CorruptRecordError(row.token)
    if row.created_at is None or row.expires_at is None:
        raise CorruptRecordError(row.token)
    return TokenRecord(
        token=row.token,
        email=row.email,
        review_id=row.review_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
        used=row.used,
        attempts=row.attempts,
    )


class SqlTokenRepository(TokenRepository):
    """Token store over an async SQLAlchemy session factory.

    Each call runs in its own short transaction.

    Args:
        session_factory: Factory producing AsyncSession instances.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, token: str) -> VersionedRecord | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(VerificationTokenRow).where(
                        VerificationTokenRow.token == token
                    )
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Token read failed for %s: %s", mask_token(token), exc)
            raise PersistenceError() from exc

        if row is None:
            return None
        return VersionedRecord(record=_row_to_record(row), version=row.version)

    async def put(self, record: TokenRecord, pending: PendingSubmission) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                session.add(
                    VerificationTokenRow(
                        token=record.token,
                        email=record.email,
                        review_id=record.review_id,
                        created_at=record.created_at,
                        expires_at=record.expires_at,
                        used=record.used,
                        attempts=record.attempts,
                        version=1,
                    )
                )
                session.add(
                    PendingSubmissionRow(
                        token=pending.token,
                        review_id=pending.review_id,
                        payload=pending.to_dict(),
                        created_at=record.created_at,
                    )
                )
        except SQLAlchemyError as exc:
            logger.error(
                "Token insert failed for %s: %s", mask_token(record.token), exc
            )
            raise PersistenceError("Failed to store verification token") from exc

    async def compare_and_swap(
        self,
        token: str,
        expected_version: int,
        record: TokenRecord,
    ) -> bool:
        stmt = (
            update(VerificationTokenRow)
            .where(
                VerificationTokenRow.token == token,
                VerificationTokenRow.version == expected_version,
            )
            .values(
                email=record.email,
                review_id=record.review_id,
                expires_at=record.expires_at,
                used=record.used,
                attempts=record.attempts,
                version=expected_version + 1,
            )
        )
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("Token update failed for %s: %s", mask_token(token), exc)
            raise PersistenceError() from exc
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count == 1

    async def delete(self, token: str) -> bool:
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    delete(PendingSubmissionRow).where(
                        PendingSubmissionRow.token == token
                    )
                )
                result = await session.execute(
                    delete(VerificationTokenRow).where(
                        VerificationTokenRow.token == token
                    )
                )
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count > 0

    async def scan_keys(self) -> list[str]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(VerificationTokenRow.token))
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc

    async def get_pending(self, token: str) -> PendingSubmission | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(PendingSubmissionRow).where(
                        PendingSubmissionRow.token == token
                    )
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc

        if row is None:
            return None
        try:
            return PendingSubmission.from_dict(row.payload)
        except ValueError as exc:
            raise CorruptRecordError(token) from exc

    async def scan_pending_keys(self) -> list[str]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(PendingSubmissionRow.token))
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc

    async def delete_pending(self, token: str) -> bool:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(PendingSubmissionRow).where(
                        PendingSubmissionRow.token == token
                    )
                )
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count > 0
