"""Daily request quota counter.

An explicit, injectable counter object with atomic increment-and-check.
The counter resets when the injected clock crosses a UTC day boundary,
or on demand via reset().
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone
from typing import Callable

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current UTC time (default clock)."""
    return datetime.now(timezone.utc)


class QuotaCounter:
    """Thread-safe per-day request budget."""

    def __init__(self, limit: int, clock: Callable[[], datetime] = utc_now):
        """Initialize counter.

        Args:
            limit: Requests allowed per UTC day.
            clock: Returns the current time (injected in tests).
        """
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        self.limit = limit
        self._clock = clock
        self._lock = threading.Lock()
        self._used = 0
        self._day: date = self._today()

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    def _roll_day(self) -> None:
        today = self._today()
        if today != self._day:
            logger.info(f"Source quota reset for {today} (used {self._used}/{self.limit})")
            self._day = today
            self._used = 0

    def try_acquire(self) -> bool:
        """Reserve one request if budget remains.

        Returns:
            True if the request may proceed, False if the quota is spent.
        """
        with self._lock:
            self._roll_day()
            if self._used >= self.limit:
                return False
            self._used += 1
            return True

    @property
    def used(self) -> int:
        with self._lock:
            self._roll_day()
            return self._used

    @property
    def remaining(self) -> int:
        with self._lock:
            self._roll_day()
            return max(0, self.limit - self._used)

    def reset(self) -> None:
        """Clear the counter (scheduled boundary or operator action)."""
        with self._lock:
            self._used = 0
            self._day = self._today()
