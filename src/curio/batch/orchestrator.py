"""Batch orchestrator: approved candidates -> generated catalog entries.

Architecture:
- BatchOrchestrator: thin layer that opens the run log, asks the selector
  for candidates, and records every per-item outcome
- GenerationProcessor: one generation call for one candidate, with
  timeout and bounded retries

Items are processed sequentially with a fixed delay between generation
calls. One failing candidate never aborts the batch; cancellation is
checked between items and keeps everything recorded so far.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable

from curio.batch.diversity import DiversificationSelector
from curio.batch.failures import classify_failure, is_retryable
from curio.config import Settings
from curio.core.errors import ConcurrentConsumptionConflict, GenerationFailure
from curio.core.identity import new_run_id
from curio.core.quota import utc_now
from curio.core.retry import RetryPolicy, call_with_retry, call_with_timeout
from curio.db import repo
from curio.db.repo import DbSession
from curio.models.domain import BatchErrorRecord, BatchRunLogEntity, CandidateEntity
from curio.models.types import GenerationRequest, GenerationResult
from curio.providers.base import EntryGenerator

logger = logging.getLogger(__name__)


class GenerationProcessor:
    """Generates the entry for a single candidate.

    Does not touch the database; status writes are the orchestrator's job.
    Only failures classified as retryable get another attempt, and a
    timed-out call is given grace seconds to settle before the next one
    starts, so at most one generation is in flight.
    """

    def __init__(
        self,
        generator: EntryGenerator,
        policy: RetryPolicy,
        timeout: float,
        grace: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.generator = generator
        self.policy = policy
        self.timeout = timeout
        self.grace = grace
        self._sleep = sleep

    def execute(self, candidate: CandidateEntity) -> GenerationResult:
        """Call the generator until it succeeds or attempts run out.

        Raises:
            GenerationFailure: After the last failed attempt, or the first
                non-retryable one.
        """
        request = GenerationRequest(
            candidate_id=candidate.candidate_id,
            image_ref=candidate.source_url,
            age_rating=candidate.age_rating,
            gender=candidate.attributes.gender,
            species=candidate.attributes.species,
            style=candidate.attributes.style,
            tags=list(candidate.tags),
        )
        label = f"generate {candidate.candidate_id}"
        attempts = 0

        def attempt() -> GenerationResult:
            nonlocal attempts
            attempts += 1
            return call_with_timeout(
                lambda: self.generator.generate_entry(request, timeout=self.timeout),
                self.timeout,
                label=label,
                grace=self.grace,
            )

        try:
            return call_with_retry(
                attempt,
                self.policy,
                retry_if=is_retryable,
                sleep=self._sleep,
                label=label,
            )
        except Exception as e:
            failure = classify_failure(e)
            raise GenerationFailure(
                candidate.candidate_id,
                attempts,
                e,
                kind=failure.kind,
                severity=failure.severity,
            ) from e


class BatchOrchestrator:
    """Runs one batch at a time against the entry generator."""

    def __init__(
        self,
        session: DbSession,
        generator: EntryGenerator,
        settings: Settings,
        *,
        selector: DiversificationSelector | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize orchestrator.

        Args:
            session: Database session for candidate and run log writes.
            generator: Entry-generation collaborator.
            settings: Timeout, retry and delay configuration.
            selector: Candidate selector (defaults to a DiversificationSelector
                on the same session).
            sleep: Used for the inter-item delay and retry backoff.
            clock: Timestamp source for the run log.
        """
        self.session = session
        self.settings = settings
        self.selector = selector or DiversificationSelector(session, settings)
        self.processor = GenerationProcessor(
            generator,
            RetryPolicy.from_settings(settings, settings.generation_retry_attempts),
            timeout=settings.generation_timeout_seconds,
            grace=settings.generation_grace_seconds,
            sleep=sleep,
        )
        self._sleep = sleep
        self._clock = clock
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Ask the active run to stop after its in-flight item."""
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def run_batch(
        self,
        target_size: int,
        trigger: str = "manual",
        scheduled_at: datetime | None = None,
    ) -> BatchRunLogEntity:
        """Select and generate up to target_size candidates.

        Args:
            target_size: Requested batch size.
            trigger: "scheduled" or "manual", recorded on the run log.
            scheduled_at: When the run was due (defaults to start time).

        Returns:
            The finalized BatchRunLogEntity.
        """
        self._cancel.clear()
        started_at = self._clock()
        log = BatchRunLogEntity(
            run_id=new_run_id(),
            scheduled_at=scheduled_at or started_at,
            started_at=started_at,
            requested_size=target_size,
            trigger=trigger,
        )
        repo.create_run_log(self.session, log)
        repo.commit(self.session)
        logger.info(f"Batch run {log.run_id} started (target {target_size}, {trigger})")

        try:
            log.selected_ids = self.selector.select_batch(target_size)
            repo.update_run_log(self.session, log)
            repo.commit(self.session)

            generated_any = False
            for candidate_id in log.selected_ids:
                if self._cancel.is_set():
                    log.status = "cancelled"
                    logger.warning(f"Batch run {log.run_id} cancelled")
                    break
                invoked = self._process_candidate(log, candidate_id, pace=generated_any)
                generated_any = generated_any or invoked
                repo.update_run_log(self.session, log)
                repo.commit(self.session)
        finally:
            if log.status == "running":
                log.status = "completed"
            log.completed_at = self._clock()
            repo.finalize_run_log(self.session, log)
            repo.commit(self.session)
            logger.info(
                f"Batch run {log.run_id} {log.status}: {log.succeeded_count} succeeded, "
                f"{log.failed_count} failed, {log.skipped_count} skipped "
                f"in {log.duration_seconds:.1f}s"
            )

        return log

    def _process_candidate(self, log: BatchRunLogEntity, candidate_id: str, pace: bool) -> bool:
        """Process one selected candidate and record the outcome on log.

        With pace set, the inter-item delay is slept right before the
        generator call. Skipped candidates never wait.

        Returns:
            True if the generator was invoked.
        """
        try:
            candidate = self._claimable(candidate_id)
        except ConcurrentConsumptionConflict as e:
            log.skipped_count += 1
            logger.warning(f"Skipping {candidate_id}: {e}")
            return False

        if pace and self.settings.inter_item_delay_seconds > 0:
            self._sleep(self.settings.inter_item_delay_seconds)

        try:
            result = self.processor.execute(candidate)
        except GenerationFailure as e:
            repo.mark_generation_failed(self.session, candidate_id, str(e))
            repo.commit(self.session)
            log.failed_count += 1
            log.errors.append(
                BatchErrorRecord(
                    candidate_id=candidate_id,
                    error_kind=e.error_kind,
                    message=str(e),
                    severity=e.severity,
                )
            )
            logger.error(str(e))
            return True

        if not repo.mark_consumed(self.session, candidate_id, result.entry_id, self._clock()):
            repo.commit(self.session)
            log.skipped_count += 1
            logger.warning(
                f"Candidate {candidate_id} was consumed concurrently; "
                f"entry {result.entry_id} not linked"
            )
            return True
        repo.commit(self.session)

        log.succeeded_count += 1
        log.entry_ids.append(result.entry_id)
        if result.cost_usd is not None:
            log.cost_estimate_usd = (log.cost_estimate_usd or 0.0) + result.cost_usd
        logger.info(f"Generated entry {result.entry_id} from {candidate_id}")
        return True

    def _claimable(self, candidate_id: str) -> CandidateEntity:
        candidate = repo.get_candidate(self.session, candidate_id)
        if candidate is None or candidate.status != "approved" or candidate.entry_id:
            raise ConcurrentConsumptionConflict(
                candidate_id, candidate.status if candidate else None
            )
        return candidate
