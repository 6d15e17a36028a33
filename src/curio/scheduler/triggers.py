"""Cron-like triggers.

A trigger only answers "when is the next fire time after now", so the
scheduling logic is testable without waiting on a wall clock.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Trigger(ABC):
    """Fire-time source for a scheduled job."""

    @abstractmethod
    def next_fire_time(self, now: datetime) -> datetime:
        """First fire time strictly after now."""
        pass


class DailyTrigger(Trigger):
    """Fires once a day at a fixed UTC hour and minute."""

    def __init__(self, hour: int, minute: int = 0):
        if not 0 <= hour <= 23:
            raise ValueError(f"hour must be in 0-23, got {hour}")
        if not 0 <= minute <= 59:
            raise ValueError(f"minute must be in 0-59, got {minute}")
        self.hour = hour
        self.minute = minute

    def next_fire_time(self, now: datetime) -> datetime:
        now = now.astimezone(timezone.utc)
        candidate = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate


class IntervalTrigger(Trigger):
    """Fires every interval, aligned to multiples of the interval since midnight UTC."""

    def __init__(self, interval: timedelta):
        if interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval

    def next_fire_time(self, now: datetime) -> datetime:
        now = now.astimezone(timezone.utc)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        elapsed = now - midnight
        slots = elapsed // self.interval + 1
        # Realign at midnight when the interval does not divide a day
        return min(midnight + self.interval * slots, midnight + timedelta(days=1))
