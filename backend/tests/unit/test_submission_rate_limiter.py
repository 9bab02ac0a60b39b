"""Tests for the moving-window submission limiter.

limits reads wall-clock time; these tests pin it to the shared FakeClock.
"""

from types import SimpleNamespace

import limits.storage.memory
import pytest

from review_verification.services import submission_rate_limiter
from review_verification.services.submission_rate_limiter import (
    SubmissionRateLimiter,
)
from tests.conftest import FakeClock


@pytest.fixture
def limiter(
    clock: FakeClock, monkeypatch: pytest.MonkeyPatch
) -> SubmissionRateLimiter:
    fake_time = SimpleNamespace(time=lambda: clock().timestamp())
    monkeypatch.setattr(limits.storage.memory, "time", fake_time)
    monkeypatch.setattr(submission_rate_limiter, "time", fake_time)
    return SubmissionRateLimiter(window_ms=60_000, max_submissions=3)


class TestMovingWindow:
    """Tests for SubmissionRateLimiter.check()."""

    def test_allows_up_to_limit(self, limiter: SubmissionRateLimiter):
        decisions = [limiter.check("ip:1.2.3.4") for _ in range(3)]
        assert all(d.allowed for d in decisions)
        assert all(d.retry_after == 0 for d in decisions)

    def test_rejects_fourth_within_window(
        self, limiter: SubmissionRateLimiter, clock: FakeClock
    ):
        for _ in range(3):
            limiter.check("ip:1.2.3.4")
        clock.advance(seconds=10)

        decision = limiter.check("ip:1.2.3.4")

        assert decision.allowed is False
        assert decision.retry_after == 50

    def test_allows_again_after_window(
        self, limiter: SubmissionRateLimiter, clock: FakeClock
    ):
        for _ in range(3):
            limiter.check("ip:1.2.3.4")
        clock.advance(seconds=60, milliseconds=1)

        assert limiter.check("ip:1.2.3.4").allowed is True

    def test_window_slides_per_hit(
        self, limiter: SubmissionRateLimiter, clock: FakeClock
    ):
        limiter.check("ip:1.2.3.4")
        clock.advance(seconds=30)
        limiter.check("ip:1.2.3.4")
        limiter.check("ip:1.2.3.4")
        clock.advance(seconds=31)

        # Only the first hit has aged out
        assert limiter.check("ip:1.2.3.4").allowed is True
        assert limiter.check("ip:1.2.3.4").allowed is False

    def test_rejected_attempts_are_not_recorded(
        self, limiter: SubmissionRateLimiter, clock: FakeClock
    ):
        for _ in range(3):
            limiter.check("ip:1.2.3.4")
        for _ in range(10):
            clock.advance(seconds=5)
            limiter.check("ip:1.2.3.4")
        clock.advance(seconds=11)

        assert limiter.check("ip:1.2.3.4").allowed is True

    def test_identifiers_are_independent(self, limiter: SubmissionRateLimiter):
        for _ in range(3):
            limiter.check("ip:1.2.3.4")

        assert limiter.check("ip:5.6.7.8").allowed is True
        assert limiter.check("email:ada@example.com").allowed is True

    def test_retry_after_at_least_one_second(
        self, limiter: SubmissionRateLimiter, clock: FakeClock
    ):
        for _ in range(3):
            limiter.check("k")
        clock.advance(seconds=59, milliseconds=900)

        assert limiter.check("k").retry_after == 1

    def test_reset_forgets_hits(self, limiter: SubmissionRateLimiter):
        for _ in range(3):
            limiter.check("k")
        limiter.reset()
        assert limiter.check("k").allowed is True

    @pytest.mark.parametrize(
        "kwargs", [{"window_ms": 0}, {"max_submissions": 0}, {"window_ms": -5}]
    )
    def test_rejects_non_positive_config(self, kwargs):
        with pytest.raises(ValueError):
            SubmissionRateLimiter(**kwargs)


class TestMemoryBound:
    """Identifiers whose window has elapsed are dropped."""

    def test_idle_identifiers_are_released(
        self, limiter: SubmissionRateLimiter, clock: FakeClock
    ):
        for i in range(1000):
            limiter.check(f"ip:10.0.{i // 256}.{i % 256}")
        assert limiter.tracked_identifiers == 1000

        clock.advance(hours=1)
        limiter.check("ip:192.0.2.1")

        assert limiter.tracked_identifiers == 1
        assert sum(len(v) for v in limiter.storage.events.values()) == 1

    def test_active_identifier_survives_sweep(
        self, limiter: SubmissionRateLimiter, clock: FakeClock
    ):
        limiter.check("busy")
        limiter.check("idle")
        clock.advance(seconds=59)
        limiter.check("busy")
        limiter.check("busy")
        clock.advance(seconds=2)

        # The sweep runs here; only "idle" has no hit left in the window
        assert limiter.check("busy").allowed is True
        assert limiter.check("busy").allowed is False
        assert limiter.tracked_identifiers == 1
