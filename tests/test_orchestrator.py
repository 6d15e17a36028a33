"""Tests for the batch orchestrator.

Properties:
1. One failing candidate never aborts the batch
2. Every selected candidate ends the run consumed, generation_failed or skipped
3. Cancellation stops between items and keeps prior results
4. The run log is persisted, finalized and immutable afterwards
"""

import threading
import time

import pytest
from conftest import BASE_TIME, make_candidate

from curio.batch.orchestrator import BatchOrchestrator, GenerationProcessor
from curio.core.errors import GenerationFailure, RunLogFinalizedError
from curio.core.retry import RetryPolicy
from curio.db import repo
from curio.models.types import GenerationResult
from curio.providers.base import EntryGenerator
from curio.providers.mock import MockEntryGenerator


class FixedSelector:
    """Selector returning a scripted id list."""

    def __init__(self, ids):
        self.ids = list(ids)

    def select_batch(self, target_size):
        return self.ids[:target_size]


class CancellingGenerator(MockEntryGenerator):
    """Requests cancellation from inside the first generation call."""

    def __init__(self):
        super().__init__()
        self.orchestrator = None

    def generate_entry(self, request, timeout=None):
        self.orchestrator.cancel()
        return super().generate_entry(request, timeout)


class HangingGenerator(EntryGenerator):
    def __init__(self):
        self.release = threading.Event()
        self.calls = 0

    def generate_entry(self, request, timeout=None):
        self.calls += 1
        self.release.wait(5)
        return GenerationResult(entry_id="late")


class InvalidPayloadGenerator(MockEntryGenerator):
    """Generator rejecting every request as malformed."""

    def generate_entry(self, request, timeout=None):
        super().generate_entry(request, timeout)
        raise ValueError(f"invalid prompt for {request.candidate_id}")


class SlowGenerator(MockEntryGenerator):
    """Generator that overruns short deadlines and records overlap."""

    def __init__(self, duration):
        super().__init__()
        self.duration = duration
        self.active = 0
        self.peak = 0

    def generate_entry(self, request, timeout=None):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.duration)
            return super().generate_entry(request, timeout)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def make_orchestrator(session, settings):
    sleeps = []

    def _make(generator, **kwargs):
        orchestrator = BatchOrchestrator(
            session,
            generator,
            settings,
            sleep=sleeps.append,
            clock=lambda: BASE_TIME,
            **kwargs,
        )
        orchestrator.sleeps = sleeps
        return orchestrator

    return _make


class TestRunBatch:
    """Happy path and partial failure."""

    def test_one_failure_does_not_abort(self, session, add_candidate, make_orchestrator):
        candidates = [
            add_candidate("approved", gender=g, species=f"s{i}")
            for i, g in enumerate(["female", "male", "female", "male", "non-binary"])
        ]
        failing = candidates[2].candidate_id
        generator = MockEntryGenerator(fail_ids={failing})

        log = make_orchestrator(generator).run_batch(5)

        assert log.status == "completed"
        assert log.succeeded_count == 4
        assert log.failed_count == 1
        assert log.skipped_count == 0
        assert len(log.entry_ids) == 4
        for candidate in candidates:
            stored = repo.get_candidate(session, candidate.candidate_id)
            if candidate.candidate_id == failing:
                assert stored.status == "generation_failed"
                assert "mock generation failure" in stored.generation_error
                assert stored.entry_id is None
            else:
                assert stored.status == "consumed"
                assert stored.entry_id in log.entry_ids
                assert stored.consumed_at == BASE_TIME

    def test_failure_recorded_with_kind(self, add_candidate, make_orchestrator):
        candidate = add_candidate("approved")
        generator = MockEntryGenerator(fail_ids={candidate.candidate_id})

        log = make_orchestrator(generator).run_batch(1)

        assert len(log.errors) == 1
        assert log.errors[0].candidate_id == candidate.candidate_id
        assert log.errors[0].error_kind == "api"
        assert log.errors[0].severity == "critical"

    def test_generation_retried_before_failing(self, settings, add_candidate, make_orchestrator):
        settings.generation_retry_attempts = 3
        candidate = add_candidate("approved")
        generator = MockEntryGenerator(fail_ids={candidate.candidate_id})

        make_orchestrator(generator).run_batch(1)

        assert generator.calls == [candidate.candidate_id] * 3

    def test_validation_error_not_retried(self, settings, add_candidate, make_orchestrator):
        settings.generation_retry_attempts = 3
        candidate = add_candidate("approved")
        generator = InvalidPayloadGenerator()

        log = make_orchestrator(generator).run_batch(1)

        assert generator.calls == [candidate.candidate_id]
        assert log.failed_count == 1
        assert log.errors[0].error_kind == "validation"
        assert log.errors[0].severity == "high"
        assert "after 1 attempt" in log.errors[0].message

    def test_empty_pool(self, make_orchestrator):
        log = make_orchestrator(MockEntryGenerator()).run_batch(3)
        assert log.status == "completed"
        assert log.selected_ids == []
        assert log.succeeded_count == 0

    def test_only_approved_are_selected(self, add_candidate, make_orchestrator):
        add_candidate()
        add_candidate("rejected")
        add_candidate("consumed")
        approved = add_candidate("approved")
        generator = MockEntryGenerator()

        log = make_orchestrator(generator).run_batch(10)

        assert log.selected_ids == [approved.candidate_id]
        assert generator.calls == [approved.candidate_id]


class TestConcurrentConsumption:
    """Candidates no longer claimable are skipped."""

    def test_already_consumed_is_skipped(self, session, add_candidate, make_orchestrator):
        consumed = add_candidate("consumed")
        approved = add_candidate("approved")
        generator = MockEntryGenerator()
        orchestrator = make_orchestrator(
            generator, selector=FixedSelector([consumed.candidate_id, approved.candidate_id])
        )

        log = orchestrator.run_batch(2)

        assert log.skipped_count == 1
        assert log.succeeded_count == 1
        assert generator.calls == [approved.candidate_id]
        assert repo.get_candidate(session, consumed.candidate_id).entry_id == "entry-0000"

    def test_unknown_id_is_skipped(self, make_orchestrator):
        orchestrator = make_orchestrator(MockEntryGenerator(), selector=FixedSelector(["missing"]))
        log = orchestrator.run_batch(1)
        assert log.skipped_count == 1


class TestCancellation:
    """Cancellation between items."""

    def test_cancel_stops_after_in_flight_item(self, session, add_candidate, make_orchestrator):
        candidates = [add_candidate("approved", species=f"s{i}") for i in range(3)]
        generator = CancellingGenerator()
        orchestrator = make_orchestrator(generator)
        generator.orchestrator = orchestrator

        log = orchestrator.run_batch(3)

        assert log.status == "cancelled"
        assert log.succeeded_count == 1
        assert len(log.selected_ids) == 3
        statuses = sorted(repo.get_candidate(session, c.candidate_id).status for c in candidates)
        assert statuses == ["approved", "approved", "consumed"]

    def test_cancel_flag_cleared_on_next_run(self, add_candidate, make_orchestrator):
        add_candidate("approved")
        orchestrator = make_orchestrator(MockEntryGenerator())
        orchestrator.cancel()
        assert orchestrator.cancel_requested

        log = orchestrator.run_batch(1)

        assert log.status == "completed"
        assert log.succeeded_count == 1


class TestCostAndPacing:
    """Cost accounting and inter-item delay."""

    def test_cost_summed(self, add_candidate, make_orchestrator):
        for i in range(3):
            add_candidate("approved", species=f"s{i}")
        log = make_orchestrator(MockEntryGenerator(cost_usd=0.25)).run_batch(3)
        assert log.cost_estimate_usd == pytest.approx(0.75)

    def test_cost_unknown_when_not_reported(self, add_candidate, make_orchestrator):
        add_candidate("approved")
        log = make_orchestrator(MockEntryGenerator(cost_usd=None)).run_batch(1)
        assert log.cost_estimate_usd is None

    def test_delay_between_generation_calls(self, settings, add_candidate, make_orchestrator):
        settings.inter_item_delay_seconds = 2.0
        for i in range(3):
            add_candidate("approved", species=f"s{i}")
        orchestrator = make_orchestrator(MockEntryGenerator())

        orchestrator.run_batch(3)

        assert orchestrator.sleeps == [2.0, 2.0]

    def test_no_delay_after_skip_only(self, settings, add_candidate, make_orchestrator):
        settings.inter_item_delay_seconds = 2.0
        approved = add_candidate("approved")
        orchestrator = make_orchestrator(
            MockEntryGenerator(), selector=FixedSelector(["missing", approved.candidate_id])
        )

        orchestrator.run_batch(2)

        assert orchestrator.sleeps == []

    def test_skipped_candidates_do_not_wait(self, settings, add_candidate, make_orchestrator):
        """Only a generator call that follows an earlier one is paced."""
        settings.inter_item_delay_seconds = 2.0
        first = add_candidate("approved", species="s0")
        second = add_candidate("approved", species="s1")
        orchestrator = make_orchestrator(
            MockEntryGenerator(),
            selector=FixedSelector(
                [first.candidate_id, "missing", second.candidate_id, "also-missing"]
            ),
        )

        log = orchestrator.run_batch(4)

        assert log.succeeded_count == 2
        assert log.skipped_count == 2
        assert orchestrator.sleeps == [2.0]


class TestTimeout:
    """Generation deadline."""

    def test_hanging_generator_fails_candidate(
        self, session, settings, add_candidate, make_orchestrator
    ):
        settings.generation_timeout_seconds = 0.05
        settings.generation_retry_attempts = 2
        candidate = add_candidate("approved")
        generator = HangingGenerator()
        try:
            log = make_orchestrator(generator).run_batch(1)
        finally:
            generator.release.set()

        assert log.failed_count == 1
        assert log.errors[0].error_kind == "timeout"
        assert generator.calls == 2
        assert repo.get_candidate(session, candidate.candidate_id).status == "generation_failed"

    def test_overdue_call_settles_before_next_generation(
        self, session, settings, add_candidate, make_orchestrator
    ):
        settings.generation_timeout_seconds = 0.05
        settings.generation_grace_seconds = 2.0
        settings.generation_retry_attempts = 2
        candidates = [add_candidate("approved", species=f"s{i}") for i in range(2)]
        generator = SlowGenerator(duration=0.2)

        log = make_orchestrator(generator).run_batch(2)

        assert generator.peak == 1
        assert log.succeeded_count == 2
        assert len(generator.calls) == 2
        for candidate in candidates:
            stored = repo.get_candidate(session, candidate.candidate_id)
            assert stored.status == "consumed"

    def test_generator_receives_deadline(self, settings, add_candidate, make_orchestrator):
        add_candidate("approved")
        generator = MockEntryGenerator()

        make_orchestrator(generator).run_batch(1)

        assert generator.timeouts == [settings.generation_timeout_seconds]


class TestRunLog:
    """Persistence of the run log."""

    def test_log_persisted_and_finalized(self, session, add_candidate, make_orchestrator):
        add_candidate("approved")
        log = make_orchestrator(MockEntryGenerator()).run_batch(1, trigger="scheduled")

        stored = repo.get_run_log(session, log.run_id)
        assert stored.status == "completed"
        assert stored.trigger == "scheduled"
        assert stored.completed_at == BASE_TIME
        assert stored.scheduled_at == BASE_TIME
        assert stored.succeeded_count == 1
        assert stored.entry_ids == log.entry_ids
        assert repo.get_running_run_logs(session) == []

    def test_finalized_log_is_immutable(self, session, make_orchestrator):
        log = make_orchestrator(MockEntryGenerator()).run_batch(1)
        log.succeeded_count = 99
        with pytest.raises(RunLogFinalizedError):
            repo.update_run_log(session, log)


class TestGenerationProcessor:
    """Single-candidate generation."""

    def test_wraps_last_error(self):
        candidate_id = make_candidate(0, url="https://img.example.com/c1.png").candidate_id
        generator = MockEntryGenerator(fail_ids={candidate_id})
        processor = GenerationProcessor(
            generator, RetryPolicy(max_attempts=2, base_delay=0), timeout=5, sleep=lambda s: None
        )

        with pytest.raises(GenerationFailure) as exc_info:
            processor.execute(make_candidate(0, "approved", url="https://img.example.com/c1.png"))

        assert exc_info.value.attempts == 2
        assert exc_info.value.error_kind == "api"
        assert generator.calls == [candidate_id, candidate_id]

    def test_non_retryable_failure_counts_one_attempt(self):
        candidate = make_candidate(0, "approved", url="https://img.example.com/c2.png")
        generator = InvalidPayloadGenerator()
        processor = GenerationProcessor(
            generator, RetryPolicy(max_attempts=3, base_delay=0), timeout=5, sleep=lambda s: None
        )

        with pytest.raises(GenerationFailure) as exc_info:
            processor.execute(candidate)

        assert exc_info.value.attempts == 1
        assert exc_info.value.error_kind == "validation"
        assert generator.calls == [candidate.candidate_id]
