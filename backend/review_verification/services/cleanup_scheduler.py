"""Periodic removal of dead verification tokens.

A sweep deletes a token when any of these holds:
- now > expires_at + grace period
- now - created_at > hard max age (regardless of expiry)
- the stored record is unreadable

then deletes pending submissions whose token is gone (orphans).

The sweep iterates a snapshot of keys taken at the start, so tokens issued
mid-sweep are never visited. A deletion racing a validation is seen by the
validator as NotFound, which is already a correct outcome, so no further
coordination is needed.

Used and exhausted tokens are left until they age out like any other; the
sweep never deletes a record that is still valid.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from review_verification.core.errors import CorruptRecordError, PersistenceError
from review_verification.repositories.token_repository import TokenRepository
from review_verification.services.audit_logger import (
    EVENT_CLEANUP,
    AuditEvent,
    AuditLogger,
)
from review_verification.services.token_types import TokenRecord, mask_token

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 3600
DEFAULT_GRACE_PERIOD = timedelta(hours=1)
DEFAULT_MAX_AGE = timedelta(days=7)


@dataclass(frozen=True)
class SweepResult:
    """Counts from one sweep.

    Attributes:
        cleaned: Token records deleted.
        orphans_removed: Pending submissions deleted for lack of a token.
        errors: Records that could not be inspected or deleted.
    """

    cleaned: int = 0
    orphans_removed: int = 0
    errors: int = 0


class CleanupScheduler:
    """Runs token sweeps on demand and on a fixed interval.

    Args:
        repository: Token store to sweep.
        audit: Receives one summary event per sweep.
        interval_seconds: Delay between background sweeps.
        grace_period: Time past expiry before a token is deleted.
        max_age: Absolute age after which any token is deleted.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: TokenRepository,
        audit: AuditLogger,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        grace_period: timedelta = DEFAULT_GRACE_PERIOD,
        max_age: timedelta = DEFAULT_MAX_AGE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.audit = audit
        self.interval_seconds = interval_seconds
        self.grace_period = grace_period
        self.max_age = max_age
        self._clock = clock or (lambda: datetime.now(UTC))
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_dead(self, record: TokenRecord, now: datetime) -> bool:
        """True if the record is past grace expiry or past max age."""
        if now > record.expires_at + self.grace_period:
            return True
        return now - record.created_at > self.max_age

    async def sweep(self) -> SweepResult:
        """Delete dead tokens and orphaned pending submissions once.

        Returns:
            SweepResult with deletion and error counts.
        """
        now = self._clock()
        cleaned = orphans = errors = 0

        for key in await self.repository.scan_keys():
            try:
                loaded = await self.repository.get(key)
            except CorruptRecordError:
                logger.warning("Deleting unreadable token record %s", mask_token(key))
                loaded = None
                dead = True
            except PersistenceError as exc:
                logger.error("Could not read token %s: %s", mask_token(key), exc)
                errors += 1
                continue
            else:
                if loaded is None:
                    # Deleted since the snapshot
                    continue
                dead = self.is_dead(loaded.record, now)

            if not dead:
                continue
            try:
                if await self.repository.delete(key):
                    cleaned += 1
            except PersistenceError as exc:
                logger.error("Could not delete token %s: %s", mask_token(key), exc)
                errors += 1

        # Pending snapshot first: a pair stored after it is never visited,
        # and a pair stored before it is already in live_keys.
        pending_keys = await self.repository.scan_pending_keys()
        live_keys = set(await self.repository.scan_keys())
        for key in pending_keys:
            if key in live_keys:
                continue
            try:
                if await self.repository.delete_pending(key):
                    orphans += 1
            except PersistenceError as exc:
                logger.error("Could not delete orphan %s: %s", mask_token(key), exc)
                errors += 1

        result = SweepResult(cleaned=cleaned, orphans_removed=orphans, errors=errors)
        logger.info(
            "Token sweep finished: cleaned=%d orphans=%d errors=%d",
            cleaned,
            orphans,
            errors,
        )
        self.audit.append(
            AuditEvent(
                event=EVENT_CLEANUP,
                details={
                    "cleaned": cleaned,
                    "orphansRemoved": orphans,
                    "errors": errors,
                },
            )
        )
        return result

    # =========================================================================
    # Background loop
    # =========================================================================

    def start(self) -> None:
        """Start the background loop on the running event loop (idempotent)."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Cleanup scheduler started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Cleanup scheduler stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Token sweep failed; will retry next interval")
