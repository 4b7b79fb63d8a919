"""Clock abstraction for time-dependent engine logic.

Circuit breaker recovery windows and queue eligibility both compare
against "now". Production code uses SystemClock; tests inject
ManualClock to move time forward without sleeping.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Source of wall-clock and monotonic time."""

    def now(self) -> datetime:
        """Return the current UTC time."""
        ...

    def monotonic(self) -> float:
        """Return monotonic seconds, for measuring durations."""
        ...


class SystemClock:
    """Clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock:
    """Controllable clock for deterministic tests.

    Example:
        clock = ManualClock()
        breaker = CircuitBreaker("svc", clock=clock)
        ...
        clock.advance(60)  # recovery window elapsed
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=UTC)
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        """Move time forward.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds

    def set(self, value: datetime) -> None:
        """Jump wall-clock time to an absolute value."""
        self._now = value


DEFAULT_CLOCK: Clock = SystemClock()
