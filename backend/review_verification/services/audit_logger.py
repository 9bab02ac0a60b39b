"""Append-only audit trail for token lifecycle and admin actions.

Every token event (created, used, attempt, revoked), every cleanup run and
every administrative action becomes one immutable JSON object in the
trail. Entries are never edited or deleted.

Writes are scheduled as background tasks with bounded retry. A write that
still fails after the last retry increments failure_count and is logged;
it never reaches the caller of the primary operation.
"""

import asyncio
import enum
import json
import logging
import random
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

from review_verification.core.errors import AuditWriteFailure
from review_verification.schemas.reviews import AdminAction, AdminActionLogEntry
from review_verification.services.token_types import mask_token

logger = logging.getLogger(__name__)

# Event names
EVENT_TOKEN_CREATED = "created"
EVENT_TOKEN_USED = "used"
EVENT_TOKEN_ATTEMPT = "attempt"
EVENT_TOKEN_REVOKED = "revoked"
EVENT_CLEANUP = "cleanup"
EVENT_SPAM_DETECTED = "spam_detected"
EVENT_ADMIN_ACTION = "admin_action"


def _sanitize_value(value: Any) -> Any:
    """Convert to a JSON-serializable value so a write never fails on encode."""
    if value is None or isinstance(value, str | int | float | bool):
        return value
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _sanitize_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_sanitize_value(v) for v in value]
    return str(value)


@dataclass(frozen=True)
class AuditEvent:
    """One audit trail entry.

    Attributes:
        event: Event name (e.g. "created").
        token_prefix: Masked token prefix, never the full secret.
        email: Normalized email involved, if any.
        review_id: Review involved, if any.
        details: Extra key/value context.
        timestamp: Set by AuditLogger.append when left empty.
    """

    event: str
    token_prefix: str | None = None
    email: str | None = None
    review_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON-lines shape."""
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "event": self.event,
            "token": self.token_prefix,
            "email": self.email,
            "reviewId": self.review_id,
            "details": _sanitize_value(self.details),
        }


# =============================================================================
# Sinks
# =============================================================================


class AuditSink(ABC):
    """Destination for audit entries."""

    @abstractmethod
    async def write(self, entry: dict[str, Any]) -> None:
        """Append one entry.

        Raises:
            AuditWriteFailure: If the entry could not be written.
        """


class JsonlAuditSink(AuditSink):
    """Appends one JSON object per line to a file. Never rewrites.

    File I/O runs in a worker thread so the event loop is never blocked.

    Args:
        path: Log file path; parent directories are created on first write.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _append_line(self, line: str) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    async def write(self, entry: dict[str, Any]) -> None:
        try:
            line = json.dumps(entry, separators=(",", ":"))
            await asyncio.to_thread(self._append_line, line)
        except (OSError, TypeError, ValueError) as exc:
            raise AuditWriteFailure(str(exc)) from exc


class InMemoryAuditSink(AuditSink):
    """Keeps entries in a list (tests and local development)."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def write(self, entry: dict[str, Any]) -> None:
        self.entries.append(entry)

    def events(self, name: str) -> list[dict[str, Any]]:
        """Return entries with the given event name."""
        return [e for e in self.entries if e["event"] == name]


# =============================================================================
# Logger
# =============================================================================


class AuditLogger:
    """Non-fatal, append-only audit writer.

    Args:
        sink: Where entries go.
        max_retries: Write attempts per entry before counting a failure.
        retry_base_delay_ms: Base delay for exponential backoff.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        sink: AuditSink,
        *,
        max_retries: int = 3,
        retry_base_delay_ms: int = 50,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.sink = sink
        self._max_retries = max_retries
        self._retry_base_delay_ms = retry_base_delay_ms
        self._clock = clock or (lambda: datetime.now(UTC))
        self._failure_count = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def failure_count(self) -> int:
        """Entries that could not be written after all retries."""
        return self._failure_count

    def append(self, event: AuditEvent) -> None:
        """Schedule an immutable, timestamped entry for writing.

        Returns immediately. Must be called from a running event loop;
        otherwise the entry is dropped and counted as a failure.
        """
        stamped = AuditEvent(
            event=event.event,
            token_prefix=event.token_prefix,
            email=event.email,
            review_id=event.review_id,
            details=dict(event.details),
            timestamp=event.timestamp or self._clock(),
        )
        entry = stamped.to_dict()
        try:
            task = asyncio.get_running_loop().create_task(
                self._write_with_retry(entry)
            )
        except RuntimeError:
            self._record_failure(entry, "no running event loop")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def token_event(
        self,
        event: str,
        token: str,
        *,
        email: str | None = None,
        review_id: str | None = None,
        **details: Any,
    ) -> None:
        """Append a token lifecycle event with the token masked."""
        self.append(
            AuditEvent(
                event=event,
                token_prefix=mask_token(token),
                email=email,
                review_id=review_id,
                details=details,
            )
        )

    def record_admin_action(
        self,
        *,
        action: AdminAction,
        review_id: str,
        performed_by: str,
        source_address: str,
        notes: str | None = None,
    ) -> AdminActionLogEntry:
        """Build and append one immutable admin action entry.

        Returns:
            The entry as written to the trail.
        """
        entry = AdminActionLogEntry(
            id=uuid.uuid4().hex,
            action=action,
            review_id=review_id,
            performed_by=performed_by,
            performed_at=self._clock(),
            notes=notes,
            source_address=source_address,
        )
        self.append(
            AuditEvent(
                event=EVENT_ADMIN_ACTION,
                review_id=review_id,
                details=entry.model_dump(mode="json", by_alias=True),
                timestamp=entry.performed_at,
            )
        )
        return entry

    async def drain(self) -> None:
        """Wait for every scheduled write to finish (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _write_with_retry(self, entry: dict[str, Any]) -> None:
        # Every sink error is retried and then counted; none reaches the caller
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                await self.sink.write(entry)
                return
            except Exception as e:  # noqa: BLE001
                last_error = e
                if attempt == self._max_retries - 1:
                    break
                base_delay = self._retry_base_delay_ms * (2**attempt)
                jitter = random.uniform(0, base_delay * 0.1)  # nosec B311
                await asyncio.sleep((base_delay + jitter) / 1000)

        self._record_failure(entry, str(last_error))

    def _record_failure(self, entry: dict[str, Any], reason: str) -> None:
        self._failure_count += 1
        logger.error(
            "Audit write failed (event=%s, failures=%d): %s",
            entry.get("event"),
            self._failure_count,
            reason,
        )
