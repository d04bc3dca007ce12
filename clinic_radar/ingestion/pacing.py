"""
Pacing Module
=============

Inter-request delay with jitter. The clock is injectable so tests can
advance time without sleeping.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Source of monotonic time and sleeping."""

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Real wall-clock time."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class Pacer:
    """
    Enforces a minimum gap between consecutive operations.

    Each gap is ``base_delay + uniform(0, jitter)`` seconds, measured from
    the previous call to :meth:`mark`. Time already spent since then counts
    toward the gap. The first call never waits.
    """

    def __init__(
        self,
        base_delay: float,
        jitter: float = 0.0,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if base_delay < 0 or jitter < 0:
            raise ValueError("base_delay and jitter must be non-negative")
        self.base_delay = base_delay
        self.jitter = jitter
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self._last_mark: float | None = None
        self.total_waited = 0.0

    def next_delay(self) -> float:
        """Draw the gap for the next operation."""
        if self.jitter == 0:
            return self.base_delay
        return self.base_delay + self.rng.uniform(0, self.jitter)

    def mark(self) -> None:
        """Record that an operation just finished."""
        self._last_mark = self.clock.monotonic()

    def wait(self) -> float:
        """
        Block until the next operation may start.

        Returns:
            Seconds actually slept
        """
        if self._last_mark is None:
            return 0.0

        gap = self.next_delay()
        elapsed = self.clock.monotonic() - self._last_mark
        remaining = gap - elapsed
        if remaining <= 0:
            return 0.0

        logger.debug(f"Pacing: sleeping {remaining:.2f}s")
        self.clock.sleep(remaining)
        self.total_waited += remaining
        return remaining

    def reset(self) -> None:
        self._last_mark = None
