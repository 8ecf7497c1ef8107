# src/nodeweave/engine/clock.py
"""Clock abstraction for testable timing logic.

Batch flush windows, retry backoff and sync re-queue delays all read time
through a Clock so tests can control it.

Production code uses SystemClock (the default).
Tests inject MockClock to control time advancement.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract clock.

    Implementations:
    - SystemClock: Uses time.monotonic() (production)
    - MockClock: Returns controllable times (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def utcnow(self) -> datetime:
        """Return the current wall-clock time (timezone-aware, UTC)."""
        ...


class SystemClock:
    """Production clock using time.monotonic() and the system wall clock."""

    def monotonic(self) -> float:
        return time.monotonic()

    def utcnow(self) -> datetime:
        return datetime.now(UTC)


class MockClock:
    """Controllable clock for deterministic testing.

    Wall-clock time is derived from ``epoch`` plus the mock monotonic value,
    so advancing the clock also advances record timestamps.

    Example:
        clock = MockClock(start=0.0)
        clock.advance(0.5)
        assert clock.monotonic() == 0.5
    """

    def __init__(self, start: float = 0.0, epoch: datetime | None = None) -> None:
        self._current = start
        self._epoch = epoch or datetime(2024, 1, 1, tzinfo=UTC)

    def monotonic(self) -> float:
        return self._current

    def utcnow(self) -> datetime:
        return self._epoch + timedelta(seconds=self._current)

    def advance(self, seconds: float) -> None:
        """Advance mock time by specified seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds

    def set(self, value: float) -> None:
        """Set mock time to an absolute value, which may be earlier than now."""
        self._current = value


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
