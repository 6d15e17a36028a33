"""Scheduler for curation cycles and batch runs.

Two jobs on independent triggers:
- curation: daily source fetch + curation drain
- batch: periodic generation run, sized so today's consumption stays
  under the daily ceiling

Due jobs are dispatched on their own threads. A job that fires while its
previous run is still active is skipped and logged, never queued.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from curio.config import Settings
from curio.core.errors import RunInProgress
from curio.core.quota import utc_now
from curio.scheduler.triggers import DailyTrigger, IntervalTrigger, Trigger
from curio.service import PopulationService

logger = logging.getLogger(__name__)


def _spawn(job: Callable[[], None]) -> None:
    threading.Thread(target=job, name="curio-job", daemon=True).start()


@dataclass
class ScheduledJob:
    """A named action with its trigger and next due time."""

    name: str
    trigger: Trigger
    action: Callable[[datetime], None]
    next_fire: datetime


class Scheduler:
    """Fires curation and batch jobs on their triggers."""

    def __init__(
        self,
        service: PopulationService,
        settings: Settings,
        *,
        curation_trigger: Trigger | None = None,
        batch_trigger: Trigger | None = None,
        clock: Callable[[], datetime] = utc_now,
        dispatch: Callable[[Callable[[], None]], None] = _spawn,
    ):
        """Initialize scheduler.

        Args:
            service: Pipeline operations to trigger.
            settings: Cadence and sizing configuration.
            curation_trigger: Defaults to daily at curation_hour_utc.
            batch_trigger: Defaults to every batch_interval_minutes.
            clock: Current time source.
            dispatch: Runs a due job (tests run jobs inline).
        """
        self.service = service
        self.settings = settings
        self._clock = clock
        self._dispatch = dispatch
        now = clock()
        curation_trigger = curation_trigger or DailyTrigger(settings.curation_hour_utc)
        batch_trigger = batch_trigger or IntervalTrigger(
            timedelta(minutes=settings.batch_interval_minutes)
        )
        self.jobs = [
            ScheduledJob(
                "curation",
                curation_trigger,
                self.run_curation_cycle,
                curation_trigger.next_fire_time(now),
            ),
            ScheduledJob(
                "batch", batch_trigger, self.run_batch_cycle, batch_trigger.next_fire_time(now)
            ),
        ]

    def tick(self, now: datetime | None = None) -> list[str]:
        """Dispatch every job that is due at now.

        Returns:
            Names of the jobs dispatched.
        """
        now = now or self._clock()
        fired: list[str] = []
        for job in self.jobs:
            if job.next_fire > now:
                continue
            scheduled_at = job.next_fire
            job.next_fire = job.trigger.next_fire_time(now)
            fired.append(job.name)
            self._dispatch(self._guarded(job, scheduled_at))
        return fired

    def next_wakeup(self) -> datetime:
        return min(job.next_fire for job in self.jobs)

    def run_forever(self, stop_event: threading.Event, max_sleep_seconds: float = 30.0) -> None:
        """Tick until stop_event is set."""
        logger.info(
            "Scheduler started: "
            + ", ".join(f"{j.name} next at {j.next_fire.isoformat()}" for j in self.jobs)
        )
        while not stop_event.is_set():
            self.tick()
            wait = (self.next_wakeup() - self._clock()).total_seconds()
            stop_event.wait(min(max(wait, 0.0), max_sleep_seconds))
        logger.info("Scheduler stopped")

    def run_curation_cycle(self, scheduled_at: datetime) -> None:
        try:
            summary = self.service.run_curation_cycle(self.settings.curation_max_items)
        except RunInProgress:
            logger.warning(
                f"Curation due at {scheduled_at.isoformat()} skipped: previous still active"
            )
            return
        logger.info(
            f"Curation cycle: fetched {summary.fetched}, approved {summary.curation.approved}, "
            f"rejected {summary.curation.rejected}, errored {summary.curation.errored}"
            + (" (source quota exhausted)" if summary.quota_exhausted else "")
        )

    def run_batch_cycle(self, scheduled_at: datetime) -> None:
        capacity = self.service.remaining_batch_capacity()
        if capacity <= 0:
            logger.info(
                f"Daily ceiling of {self.settings.daily_batch_ceiling} reached; "
                f"batch due at {scheduled_at.isoformat()} skipped"
            )
            return
        size = min(self.settings.batch_size_per_run, capacity)
        try:
            self.service.trigger_batch(size, trigger="scheduled", scheduled_at=scheduled_at)
        except RunInProgress:
            logger.warning(
                f"Batch due at {scheduled_at.isoformat()} skipped: previous still active"
            )

    def _guarded(self, job: ScheduledJob, scheduled_at: datetime) -> Callable[[], None]:
        def _run() -> None:
            try:
                job.action(scheduled_at)
            except Exception:
                logger.exception(f"Scheduled {job.name} job failed")

        return _run
