"""Outward interface of the population pipeline.

PopulationService is what a trigger layer (scheduler, admin surface) calls.
Each operation opens its own session, so calls can come from different
threads. At most one curation run and one batch run are active at a time;
a second request of the same kind raises RunInProgress instead of queueing.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Generator

from sqlalchemy.orm import Session, sessionmaker

from curio.aggregation.stats import (
    compute_pipeline_stats,
    list_candidate_page,
    start_of_utc_day,
    to_run_summary,
)
from curio.batch.orchestrator import BatchOrchestrator
from curio.config import Settings
from curio.core.errors import CollaboratorError, QuotaExceeded, RunInProgress
from curio.core.quota import QuotaCounter, utc_now
from curio.curation.pipeline import CurationPipeline
from curio.db import repo
from curio.models.types import (
    BatchRunSummary,
    CandidatePage,
    CurationCycleSummary,
    CurationSummary,
    FullCycleSummary,
    PipelineStats,
    SourceQuery,
)
from curio.providers.base import (
    AttributeExtractor,
    ClassifierProvider,
    EntryGenerator,
    ScorerProvider,
    SourceProvider,
)
from curio.source.client import SourceClient
from curio.source.keywords import KeywordRotation

logger = logging.getLogger(__name__)

API_KEY_MASK = "***"


class PopulationService:
    """TriggerCuration, TriggerBatch, GetStats and GetCandidates."""

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        source: SourceProvider,
        classifier: ClassifierProvider,
        scorer: ScorerProvider,
        extractor: AttributeExtractor,
        generator: EntryGenerator,
        *,
        quota: QuotaCounter | None = None,
        keywords: KeywordRotation | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize service.

        Args:
            settings: Pipeline configuration.
            session_factory: Creates a session per operation.
            source: Source collaborator.
            classifier: Safety/age classifier.
            scorer: Quality scorer.
            extractor: Attribute extractor.
            generator: Entry-generation collaborator.
            quota: Daily source request counter (defaults to one sized from settings).
            keywords: Search keyword rotation (defaults to one built from settings).
            sleep: Backoff and inter-item sleep (injected in tests).
            clock: Current time source.
        """
        self.settings = settings
        self.session_factory = session_factory
        self.source = source
        self.classifier = classifier
        self.scorer = scorer
        self.extractor = extractor
        self.generator = generator
        self.quota = quota or QuotaCounter(settings.daily_source_quota, clock=clock)
        self.keywords = keywords or KeywordRotation(
            settings.search_keywords, per_query=settings.keywords_per_query
        )
        self._sleep = sleep
        self._clock = clock
        self._curation_lock = threading.Lock()
        self._batch_lock = threading.Lock()
        self._active_batch: BatchOrchestrator | None = None

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self.session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Curation
    # ------------------------------------------------------------------

    def trigger_curation(self, max_items: int | None = None) -> CurationSummary:
        """Curate up to max_items pending candidates.

        Raises:
            RunInProgress: If a curation run is already active.
        """
        if not self._curation_lock.acquire(blocking=False):
            raise RunInProgress("curation")
        try:
            return self._process_pending(max_items or self.settings.curation_max_items)
        finally:
            self._curation_lock.release()

    def run_curation_cycle(self, max_items: int | None = None) -> CurationCycleSummary:
        """Fetch new candidates from the source, then curate pending ones.

        A spent quota or an unreachable source is recorded in the summary;
        curation of already-pending candidates still runs.

        Raises:
            RunInProgress: If a curation run is already active.
        """
        if not self._curation_lock.acquire(blocking=False):
            raise RunInProgress("curation")
        try:
            return self._curation_cycle(max_items)
        finally:
            self._curation_lock.release()

    def _curation_cycle(self, max_items: int | None) -> CurationCycleSummary:
        fetched, quota_exhausted, fetch_error = self._fetch()
        curation = self._process_pending(max_items or self.settings.curation_max_items)
        return CurationCycleSummary(
            fetched=fetched,
            quota_exhausted=quota_exhausted,
            fetch_error=fetch_error,
            curation=curation,
        )

    def _fetch(self) -> tuple[int, bool, str | None]:
        query = SourceQuery(
            keywords=self.keywords.next_keywords(),
            min_popularity=self.settings.min_source_popularity,
            safety_tier=self.settings.source_safety_tier,
        )
        with self._session() as session:
            client = SourceClient(
                session,
                self.source,
                self.quota,
                self.settings,
                sleep=self._sleep,
                clock=self._clock,
            )
            try:
                found = client.fetch_candidates(query, self.settings.fetch_limit)
            except QuotaExceeded as e:
                logger.warning(f"Skipping fetch: {e}")
                return 0, True, None
            except CollaboratorError as e:
                logger.error(f"Source fetch failed: {e}")
                return 0, False, str(e)
        return len(found), False, None

    def _process_pending(self, max_items: int) -> CurationSummary:
        with self._session() as session:
            pipeline = CurationPipeline(
                session,
                self.classifier,
                self.scorer,
                self.extractor,
                self.settings,
                sleep=self._sleep,
                clock=self._clock,
            )
            return pipeline.process_pending(max_items)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def remaining_batch_capacity(self) -> int:
        """Entries that may still be generated today under the daily ceiling."""
        with self._session() as session:
            consumed = repo.count_consumed_since(session, start_of_utc_day(self._clock()))
        return max(0, self.settings.daily_batch_ceiling - consumed)

    def trigger_batch(
        self,
        target_size: int,
        trigger: str = "manual",
        scheduled_at: datetime | None = None,
    ) -> BatchRunSummary:
        """Run one batch, capped by the remaining daily ceiling.

        Raises:
            RunInProgress: If a batch run is already active.
        """
        if not self._batch_lock.acquire(blocking=False):
            raise RunInProgress("batch")
        try:
            return self._batch(target_size, trigger, scheduled_at)
        finally:
            self._batch_lock.release()

    def _batch(
        self, target_size: int, trigger: str, scheduled_at: datetime | None
    ) -> BatchRunSummary:
        capacity = self.remaining_batch_capacity()
        size = min(target_size, capacity)
        if size < target_size:
            logger.info(
                f"Batch size capped at {size} (requested {target_size}, "
                f"daily ceiling {self.settings.daily_batch_ceiling})"
            )
        with self._session() as session:
            orchestrator = BatchOrchestrator(
                session,
                self.generator,
                self.settings,
                sleep=self._sleep,
                clock=self._clock,
            )
            self._active_batch = orchestrator
            try:
                log = orchestrator.run_batch(size, trigger=trigger, scheduled_at=scheduled_at)
            finally:
                self._active_batch = None
        return to_run_summary(log)

    def cancel_batch(self) -> bool:
        """Ask the active batch run to stop after its in-flight item.

        Returns:
            False if no batch run is active.
        """
        orchestrator = self._active_batch
        if orchestrator is None:
            return False
        orchestrator.cancel()
        return True

    def requeue_generation_failed(self, candidate_id: str) -> bool:
        """Make a generation-failed candidate selectable again.

        Returns:
            False if the candidate is not in generation_failed.
        """
        with self._session() as session:
            requeued = repo.requeue_generation_failed(session, candidate_id)
            repo.commit(session)
        if requeued:
            logger.info(f"Requeued {candidate_id} for generation")
        return requeued

    # ------------------------------------------------------------------
    # Full cycle
    # ------------------------------------------------------------------

    def run_full_cycle(
        self,
        target_size: int | None = None,
        max_items: int | None = None,
    ) -> FullCycleSummary:
        """Fetch and curate, then generate a batch from the refreshed pool.

        Both run slots are held for the whole cycle.

        Args:
            target_size: Batch size (defaults to batch_size_per_run), still
                capped by the daily ceiling.
            max_items: Curation cap (defaults to curation_max_items).

        Raises:
            RunInProgress: If a curation or batch run is already active.
        """
        if not self._curation_lock.acquire(blocking=False):
            raise RunInProgress("curation")
        try:
            if not self._batch_lock.acquire(blocking=False):
                raise RunInProgress("batch")
            try:
                logger.info("Full population cycle started")
                curation = self._curation_cycle(max_items)
                batch = self._batch(
                    target_size or self.settings.batch_size_per_run, "manual", None
                )
            finally:
                self._batch_lock.release()
        finally:
            self._curation_lock.release()
        return FullCycleSummary(curation=curation, batch=batch)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_settings_view(self) -> dict[str, Any]:
        """Effective configuration, with the source API key masked."""
        view = self.settings.model_dump(mode="json")
        if view.get("source_api_key"):
            view["source_api_key"] = API_KEY_MASK
        return view

    def get_stats(self, recent_runs: int = 5) -> PipelineStats:
        with self._session() as session:
            return compute_pipeline_stats(session, self._clock(), recent_runs)

    def get_candidates(
        self,
        status: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> CandidatePage:
        with self._session() as session:
            return list_candidate_page(session, status=status, offset=offset, limit=limit)
