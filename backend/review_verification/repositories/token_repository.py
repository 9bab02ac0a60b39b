"""Token store interface and in-memory implementation.

One keyed store maps token → record; a second keyspace holds the pending
submission paired with each token. Mutations go through compare_and_swap
so that concurrent read-modify-write cycles on one token never lose an
update.

WHY IN-MEMORY DEFAULT:
- Single-instance portfolio deployment
- Tests get an isolated store per TokenService
- SqlTokenRepository implements the same contract for PostgreSQL
"""

import threading
from abc import ABC, abstractmethod
from typing import Any

from review_verification.core.errors import CorruptRecordError, PersistenceError
from review_verification.services.token_types import (
    PendingSubmission,
    TokenRecord,
    VersionedRecord,
)

_INITIAL_VERSION = 1


class TokenRepository(ABC):
    """Keyed token store with atomic compare-and-swap updates.

    Implementations must make put() all-or-nothing across the token and its
    pending submission, and compare_and_swap() linearizable per key.
    Operations on different keys must not contend on a shared lock held
    across I/O.
    """

    @abstractmethod
    async def get(self, token: str) -> VersionedRecord | None:
        """Load a token record by exact key.

        Raises:
            CorruptRecordError: If the stored record cannot be parsed.
            PersistenceError: If the store cannot be read.
        """

    @abstractmethod
    async def put(self, record: TokenRecord, pending: PendingSubmission) -> None:
        """Insert a token and its pending submission as one unit.

        Raises:
            PersistenceError: If the key exists or the write fails. Nothing
                is stored in that case.
        """

    @abstractmethod
    async def compare_and_swap(
        self,
        token: str,
        expected_version: int,
        record: TokenRecord,
    ) -> bool:
        """Replace a record only if its version still matches.

        Returns:
            True if the swap was applied, False if the record changed or
            no longer exists.
        """

    @abstractmethod
    async def delete(self, token: str) -> bool:
        """Delete a token and its pending submission.

        Returns:
            True if a token record was removed.
        """

    @abstractmethod
    async def scan_keys(self) -> list[str]:
        """Return a snapshot list of all token keys."""

    @abstractmethod
    async def get_pending(self, token: str) -> PendingSubmission | None:
        """Load the pending submission stored under a token."""

    @abstractmethod
    async def scan_pending_keys(self) -> list[str]:
        """Return a snapshot list of all pending submission keys."""

    @abstractmethod
    async def delete_pending(self, token: str) -> bool:
        """Delete a pending submission only.

        Returns:
            True if a pending submission was removed.
        """


class InMemoryTokenRepository(TokenRepository):
    """Process-local token store.

    Records are kept in serialized form so that reads always return fresh
    immutable snapshots and unreadable entries surface as CorruptRecordError
    exactly as they would from durable storage. A single lock guards the
    dictionaries; it is held only for the dictionary operation itself, never
    while callers decide on the snapshot.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, tuple[dict[str, Any], int]] = {}
        self._pending: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    async def get(self, token: str) -> VersionedRecord | None:
        with self._lock:
            entry = self._tokens.get(token)
        if entry is None:
            return None
        data, version = entry
        try:
            record = TokenRecord.from_dict(data)
        except ValueError as exc:
            raise CorruptRecordError(token) from exc
        return VersionedRecord(record=record, version=version)

    async def put(self, record: TokenRecord, pending: PendingSubmission) -> None:
        token_data = record.to_dict()
        pending_data = pending.to_dict()
        with self._lock:
            if record.token in self._tokens or record.token in self._pending:
                raise PersistenceError("Token key already exists")
            self._tokens[record.token] = (token_data, _INITIAL_VERSION)
            self._pending[record.token] = pending_data

    async def compare_and_swap(
        self,
        token: str,
        expected_version: int,
        record: TokenRecord,
    ) -> bool:
        data = record.to_dict()
        with self._lock:
            entry = self._tokens.get(token)
            if entry is None or entry[1] != expected_version:
                return False
            self._tokens[token] = (data, expected_version + 1)
        return True

    async def delete(self, token: str) -> bool:
        with self._lock:
            removed = self._tokens.pop(token, None)
            self._pending.pop(token, None)
        return removed is not None

    async def scan_keys(self) -> list[str]:
        with self._lock:
            return list(self._tokens)

    async def get_pending(self, token: str) -> PendingSubmission | None:
        with self._lock:
            data = self._pending.get(token)
        if data is None:
            return None
        try:
            return PendingSubmission.from_dict(data)
        except ValueError as exc:
            raise CorruptRecordError(token) from exc

    async def scan_pending_keys(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    async def delete_pending(self, token: str) -> bool:
        with self._lock:
            removed = self._pending.pop(token, None)
        return removed is not None

    def clear(self) -> None:
        """Drop every record (for testing)."""
        with self._lock:
            self._tokens.clear()
            self._pending.clear()
