"""Tests for the scheduler.

Properties:
1. Jobs fire only when due, on their own triggers
2. Scheduled batches never push today's consumption past the daily ceiling
3. A job firing while its previous run is active is skipped, not queued
4. A failing job never stops the scheduler
"""

import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from curio.core.errors import RunInProgress
from curio.models.types import CurationCycleSummary, CurationSummary
from curio.scheduler.scheduler import Scheduler
from curio.scheduler.triggers import IntervalTrigger

START = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeService:
    """Records scheduler calls."""

    def __init__(self, capacity=24):
        self.capacity = capacity
        self.batches = []
        self.curations = []
        self.batch_error = None
        self.curation_error = None

    def remaining_batch_capacity(self):
        return self.capacity

    def trigger_batch(self, target_size, trigger="manual", scheduled_at=None):
        if self.batch_error:
            raise self.batch_error
        self.batches.append((target_size, trigger, scheduled_at))

    def run_curation_cycle(self, max_items=None):
        if self.curation_error:
            raise self.curation_error
        self.curations.append(max_items)
        return CurationCycleSummary(fetched=0, quota_exhausted=False, curation=CurationSummary())


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def make_scheduler(service, settings):
    def _make(**kwargs):
        return Scheduler(
            service,
            settings,
            clock=lambda: START,
            dispatch=lambda job: job(),
            **kwargs,
        )

    return _make


class TestTiming:
    """Next fire times and due checks."""

    def test_initial_fire_times(self, settings, make_scheduler):
        settings.curation_hour_utc = 3
        settings.batch_interval_minutes = 60
        scheduler = make_scheduler()
        fires = {job.name: job.next_fire for job in scheduler.jobs}
        assert fires == {
            "curation": datetime(2026, 3, 3, 3, 0, tzinfo=timezone.utc),
            "batch": datetime(2026, 3, 2, 13, 0, tzinfo=timezone.utc),
        }
        assert scheduler.next_wakeup() == fires["batch"]

    def test_nothing_due(self, service, make_scheduler):
        assert make_scheduler().tick(START + timedelta(minutes=30)) == []
        assert service.batches == []

    def test_batch_fires_when_due(self, service, settings, make_scheduler):
        settings.batch_size_per_run = 2
        scheduler = make_scheduler()

        fired = scheduler.tick(START + timedelta(hours=1))

        assert fired == ["batch"]
        assert service.batches == [(2, "scheduled", START + timedelta(hours=1))]
        batch_job = next(j for j in scheduler.jobs if j.name == "batch")
        assert batch_job.next_fire == START + timedelta(hours=2)

    def test_missed_fires_collapse_into_one(self, service, make_scheduler):
        scheduler = make_scheduler()

        fired = scheduler.tick(START + timedelta(hours=15, minutes=5))

        assert fired == ["curation", "batch"]
        assert len(service.batches) == 1
        assert service.curations == [scheduler.settings.curation_max_items]

    def test_custom_triggers(self, service, make_scheduler):
        scheduler = make_scheduler(batch_trigger=IntervalTrigger(timedelta(minutes=5)))
        assert scheduler.tick(START + timedelta(minutes=5)) == ["batch"]


class TestCeiling:
    """Daily ceiling sizing."""

    def test_ceiling_reached_skips_batch(self, service, make_scheduler, caplog):
        service.capacity = 0
        with caplog.at_level(logging.INFO):
            make_scheduler().tick(START + timedelta(hours=1))
        assert service.batches == []
        assert "ceiling" in caplog.text

    def test_size_capped_by_remaining_capacity(self, service, settings, make_scheduler):
        settings.batch_size_per_run = 5
        service.capacity = 2
        make_scheduler().tick(START + timedelta(hours=1))
        assert service.batches[0][0] == 2


class TestOverlap:
    """Runs still active when the next fire comes due."""

    def test_batch_in_progress_skipped(self, service, make_scheduler, caplog):
        service.batch_error = RunInProgress("batch")
        with caplog.at_level(logging.WARNING):
            fired = make_scheduler().tick(START + timedelta(hours=1))
        assert fired == ["batch"]
        assert "skipped" in caplog.text

    def test_curation_in_progress_skipped(self, service, make_scheduler, caplog):
        service.curation_error = RunInProgress("curation")
        with caplog.at_level(logging.WARNING):
            make_scheduler().tick(START + timedelta(days=1))
        assert service.curations == []
        assert "skipped" in caplog.text


class TestFailures:
    """Unexpected job errors."""

    def test_failing_job_logged_and_rescheduled(self, service, make_scheduler, caplog):
        service.batch_error = RuntimeError("database is locked")
        scheduler = make_scheduler()

        with caplog.at_level(logging.ERROR):
            scheduler.tick(START + timedelta(hours=1))

        assert "Scheduled batch job failed" in caplog.text
        service.batch_error = None
        assert scheduler.tick(START + timedelta(hours=2)) == ["batch"]
        assert len(service.batches) == 1


class TestRunForever:
    def test_stops_when_event_set(self, service, settings):
        stop = threading.Event()
        now = [START]

        def clock():
            return now[0]

        def dispatch(job):
            job()
            stop.set()

        scheduler = Scheduler(service, settings, clock=clock, dispatch=dispatch)
        now[0] = START + timedelta(hours=1)

        scheduler.run_forever(stop, max_sleep_seconds=0.01)

        assert len(service.batches) == 1

    def test_does_not_tick_when_already_stopped(self, service, settings):
        stop = threading.Event()
        stop.set()
        scheduler = Scheduler(
            service, settings, clock=lambda: START + timedelta(days=2), dispatch=lambda job: job()
        )
        scheduler.run_forever(stop)
        assert service.batches == []
