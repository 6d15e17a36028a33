"""Curation pipeline for pending candidates.

Architecture:
- CandidateEvaluator: runs the collaborator steps for one candidate and
  returns a CurationOutcome; never touches the database
- CurationPipeline: loads pending candidates, fans evaluation out over a
  small thread pool, and writes each terminal result on the calling thread

Step order per candidate: safety -> quality -> duplicate -> attributes.
A rejection at any step skips the remaining ones. Infrastructure errors
leave the candidate pending so the next run retries it.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Literal, TypeVar

from curio.config import Settings
from curio.core.errors import ClassificationInfrastructureError, CollaboratorError, PolicyRejection
from curio.core.quota import utc_now
from curio.core.retry import RetryPolicy, call_with_retry, call_with_timeout
from curio.curation import policy
from curio.curation.duplicates import DuplicateIndex, ImageSignature
from curio.db import repo
from curio.db.repo import DbSession
from curio.models.domain import CandidateAttributes, CandidateEntity
from curio.models.types import CurationSummary
from curio.providers.base import AttributeExtractor, ClassifierProvider, ScorerProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CurationOutcome:
    """Result of evaluating one candidate.

    status is None when an infrastructure error prevented a decision.
    """

    candidate_id: str
    status: Literal["approved", "rejected"] | None
    rejection_reason: str | None = None
    safety_tier: str | None = None
    age_rating: str | None = None
    quality_score: float | None = None
    quality_subscores: dict[str, float] = field(default_factory=dict)
    content_categories: list[str] = field(default_factory=list)
    attributes: CandidateAttributes = field(default_factory=CandidateAttributes)
    needs_review: bool = False
    error: str | None = None


class CandidateEvaluator:
    """Runs the curation steps for a single candidate."""

    def __init__(
        self,
        classifier: ClassifierProvider,
        scorer: ScorerProvider,
        extractor: AttributeExtractor,
        settings: Settings,
        duplicate_index: DuplicateIndex,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.classifier = classifier
        self.scorer = scorer
        self.extractor = extractor
        self.settings = settings
        self.duplicate_index = duplicate_index
        self.retry_policy = RetryPolicy.from_settings(
            settings, settings.collaborator_retry_attempts
        )
        self._sleep = sleep

    def evaluate(self, candidate: CandidateEntity) -> CurationOutcome:
        """Evaluate a candidate without writing anything.

        Returns:
            CurationOutcome with status approved, rejected or None (errored).
        """
        outcome = CurationOutcome(candidate_id=candidate.candidate_id, status=None)
        image_ref = candidate.source_url
        try:
            # 1. Safety, always first
            classification = self._call(
                lambda: self.classifier.classify(image_ref), "classify", candidate
            )
            outcome.safety_tier = classification.safety_tier
            outcome.content_categories = list(classification.categories)
            outcome.age_rating = policy.check_safety(classification)

            # 2. Quality
            score = self._call(lambda: self.scorer.score(image_ref), "score", candidate)
            outcome.quality_score = score.composite
            outcome.quality_subscores = dict(score.subscores)
            decision = policy.check_quality(
                score,
                min_score=self.settings.min_quality_score,
                auto_approve_threshold=self.settings.auto_approve_threshold,
                require_manual_review=self.settings.require_manual_review,
            )
            outcome.needs_review = decision.needs_review

            # 3. Duplicates
            match = self.duplicate_index.check_and_add(ImageSignature.from_candidate(candidate))
            if match is not None:
                raise PolicyRejection(
                    policy.REASON_DUPLICATE,
                    f"{match.similarity:.0%} similar to {match.match_id}",
                )

        except PolicyRejection as e:
            outcome.status = "rejected"
            outcome.rejection_reason = e.reason
            outcome.needs_review = False
            logger.debug(f"Rejected {candidate.candidate_id}: {e}")
            return outcome

        except CollaboratorError as e:
            outcome.error = str(e)
            logger.warning(f"Curation of {candidate.candidate_id} left pending: {e}")
            return outcome

        # 4. Attributes never block approval
        outcome.attributes = self._extract_attributes(candidate)
        outcome.status = "approved"
        return outcome

    def _extract_attributes(self, candidate: CandidateEntity) -> CandidateAttributes:
        try:
            extracted = self._call(
                lambda: self.extractor.extract_attributes(candidate.source_url),
                "extract_attributes",
                candidate,
            )
        except CollaboratorError as e:
            logger.warning(
                f"Attribute extraction failed for {candidate.candidate_id}, "
                f"defaulting to unknown: {e}"
            )
            return CandidateAttributes()
        return CandidateAttributes.from_labels(extracted.gender, extracted.species, extracted.style)

    def _call(self, fn: Callable[[], T], step: str, candidate: CandidateEntity) -> T:
        """Invoke a collaborator with timeout and retries.

        Any failure that survives the retries is reported as a
        ClassificationInfrastructureError.
        """
        label = f"{step} {candidate.candidate_id}"
        timeout = self.settings.collaborator_timeout_seconds
        try:
            return call_with_retry(
                lambda: call_with_timeout(fn, timeout, label=label),
                self.retry_policy,
                sleep=self._sleep,
                label=label,
            )
        except CollaboratorError:
            raise
        except Exception as e:
            raise ClassificationInfrastructureError(
                f"{label} failed: {type(e).__name__}: {e}"
            ) from e


class CurationPipeline:
    """Drains pending candidates into approved/rejected."""

    def __init__(
        self,
        session: DbSession,
        classifier: ClassifierProvider,
        scorer: ScorerProvider,
        extractor: AttributeExtractor,
        settings: Settings,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize pipeline.

        Args:
            session: Database session; used only from the calling thread.
            classifier: Safety/age classifier.
            scorer: Quality scorer.
            extractor: Attribute extractor.
            settings: Thresholds, concurrency and retry configuration.
            sleep: Backoff sleep (injected in tests).
            clock: Curation timestamp source.
        """
        self.session = session
        self.classifier = classifier
        self.scorer = scorer
        self.extractor = extractor
        self.settings = settings
        self._sleep = sleep
        self._clock = clock

    def process_pending(self, max_items: int) -> CurationSummary:
        """Curate up to max_items pending candidates, oldest first.

        Returns:
            CurationSummary with per-outcome counts and error details.
        """
        summary = CurationSummary()
        pending = repo.get_pending_candidates(self.session, max_items)
        if not pending:
            logger.info("No pending candidates to curate")
            return summary

        evaluator = self._build_evaluator()
        workers = min(self.settings.curation_concurrency, len(pending))
        logger.info(f"Curating {len(pending)} pending candidate(s) with {workers} worker(s)")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="curio-curate") as pool:
            futures = [pool.submit(evaluator.evaluate, candidate) for candidate in pending]
            for future in futures:
                self._record(future.result(), summary)

        logger.info(
            f"Curation finished: {summary.approved} approved, {summary.rejected} rejected, "
            f"{summary.errored} errored, {summary.flagged_for_review} flagged for review"
        )
        return summary

    def curate_candidate(self, candidate_id: str) -> CurationOutcome | None:
        """Curate one candidate by id.

        A candidate that already has a terminal status is left untouched and
        no collaborator is called.

        Returns:
            The outcome, or None if the candidate was not pending.

        Raises:
            ValueError: If the candidate does not exist.
        """
        candidate = repo.get_candidate(self.session, candidate_id)
        if candidate is None:
            raise ValueError(f"Candidate not found: {candidate_id}")
        if candidate.status != "pending":
            logger.debug(f"Candidate {candidate_id} already {candidate.status}; skipping")
            return None

        outcome = self._build_evaluator().evaluate(candidate)
        self._record(outcome, CurationSummary())
        return outcome

    def _build_evaluator(self) -> CandidateEvaluator:
        index = DuplicateIndex(
            threshold=self.settings.duplicate_similarity_threshold,
            lookback=self.settings.duplicate_lookback,
        )
        index.seed(repo.get_recently_curated(self.session, self.settings.duplicate_lookback))
        return CandidateEvaluator(
            classifier=self.classifier,
            scorer=self.scorer,
            extractor=self.extractor,
            settings=self.settings,
            duplicate_index=index,
            sleep=self._sleep,
        )

    def _record(self, outcome: CurationOutcome, summary: CurationSummary) -> None:
        summary.processed += 1
        if outcome.status is None:
            summary.errored += 1
            summary.errors.append(
                {"candidate_id": outcome.candidate_id, "message": outcome.error or "unknown error"}
            )
            return

        written = repo.complete_curation(
            self.session,
            outcome.candidate_id,
            outcome.status,
            safety_tier=outcome.safety_tier,
            age_rating=outcome.age_rating,
            quality_score=outcome.quality_score,
            quality_subscores=outcome.quality_subscores,
            content_categories=outcome.content_categories,
            attributes=outcome.attributes,
            needs_review=outcome.needs_review,
            rejection_reason=outcome.rejection_reason,
            curated_at=self._clock(),
        )
        repo.commit(self.session)
        if not written:
            logger.warning(f"Candidate {outcome.candidate_id} was curated concurrently; ignored")
            return

        if outcome.status == "approved":
            summary.approved += 1
            if outcome.needs_review:
                summary.flagged_for_review += 1
        else:
            summary.rejected += 1
            reason = outcome.rejection_reason or "unspecified"
            summary.rejection_reasons[reason] = summary.rejection_reasons.get(reason, 0) + 1
