"""Moving-window submission limiter.

Caps accepted submissions per identifier (client IP, normalized email)
within a rolling window. Only accepted hits are recorded, so a client that
keeps hammering does not push its own window further out.

Built on the ``limits`` moving-window strategy, the same library slowapi
uses for the per-IP request limits on the HTTP routes. slowapi counts
requests per IP, this counts submissions per identity.
"""

import math
import threading
import time
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

DEFAULT_WINDOW_MS = 60_000
DEFAULT_MAX_SUBMISSIONS = 3


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a limiter check.

    Attributes:
        allowed: True if the submission may proceed (and was counted).
        retry_after: Whole seconds until the next slot frees up; 0 if allowed.
    """

    allowed: bool
    retry_after: int = 0


class SubmissionRateLimiter:
    """Per-identifier moving window.

    The window has one-second granularity; ``window_ms`` is rounded up to
    whole seconds. Identifiers whose window has fully elapsed are cleared
    from storage at most once per window, so memory stays bounded by the
    identifiers seen in the last window.

    Args:
        window_ms: Window length in milliseconds.
        max_submissions: Accepted submissions allowed per window.
        storage: limits storage backend. Defaults to a fresh MemoryStorage.
    """

    def __init__(
        self,
        *,
        window_ms: int = DEFAULT_WINDOW_MS,
        max_submissions: int = DEFAULT_MAX_SUBMISSIONS,
        storage: MemoryStorage | None = None,
    ) -> None:
        if window_ms <= 0 or max_submissions <= 0:
            msg = "window_ms and max_submissions must be positive"
            raise ValueError(msg)
        self.window_ms = window_ms
        self.max_submissions = max_submissions
        self.storage = storage if storage is not None else MemoryStorage()
        self._item = RateLimitItemPerSecond(
            max_submissions,
            math.ceil(window_ms / 1000),
            namespace="submissions",
        )
        self._strategy = MovingWindowRateLimiter(self.storage)
        # identifier -> time its newest accepted hit leaves the window
        self._expires: dict[str, float] = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()

    @property
    def tracked_identifiers(self) -> int:
        """Number of identifiers currently held in memory."""
        with self._lock:
            return len(self._expires)

    def check(self, identifier: str) -> RateLimitDecision:
        """Record a submission for identifier if the window allows it."""
        now = time.time()
        self._sweep(now)

        if self._strategy.hit(self._item, identifier):
            with self._lock:
                self._expires[identifier] = now + self._item.get_expiry()
            return RateLimitDecision(allowed=True)

        stats = self._strategy.get_window_stats(self._item, identifier)
        return RateLimitDecision(
            allowed=False,
            retry_after=max(1, math.ceil(stats.reset_time - now)),
        )

    def reset(self) -> None:
        """Forget every identifier (for testing)."""
        with self._lock:
            self._expires.clear()
            self._next_sweep = 0.0
        self.storage.reset()

    def _sweep(self, now: float) -> None:
        with self._lock:
            if now < self._next_sweep:
                return
            self._next_sweep = now + self._item.get_expiry()
            stale = [k for k, expires in self._expires.items() if expires <= now]
            for identifier in stale:
                del self._expires[identifier]
                self._strategy.clear(self._item, identifier)
