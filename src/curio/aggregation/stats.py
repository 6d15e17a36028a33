"""Pipeline statistics and outward record views.

Domain logic is pure - database operations go through repo.
"""

from __future__ import annotations

from datetime import datetime, timezone

from curio.db import repo
from curio.db.repo import DbSession
from curio.models.domain import BatchRunLogEntity, CandidateEntity
from curio.models.types import (
    BatchErrorDetail,
    BatchRunSummary,
    CandidateDetail,
    CandidatePage,
    PipelineStats,
    PoolDistribution,
)


def start_of_utc_day(now: datetime) -> datetime:
    """Midnight UTC of the day containing now."""
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def to_run_summary(log: BatchRunLogEntity) -> BatchRunSummary:
    return BatchRunSummary(
        run_id=log.run_id,
        status=log.status,
        trigger=log.trigger,
        scheduled_at=log.scheduled_at,
        started_at=log.started_at,
        completed_at=log.completed_at,
        requested_size=log.requested_size,
        succeeded_count=log.succeeded_count,
        failed_count=log.failed_count,
        skipped_count=log.skipped_count,
        selected_ids=list(log.selected_ids),
        entry_ids=list(log.entry_ids),
        errors=[
            BatchErrorDetail(
                candidate_id=e.candidate_id,
                error_kind=e.error_kind,
                message=e.message,
                severity=e.severity,
            )
            for e in log.errors
        ],
        duration_seconds=log.duration_seconds,
        cost_estimate_usd=log.cost_estimate_usd,
    )


def to_candidate_detail(candidate: CandidateEntity) -> CandidateDetail:
    return CandidateDetail(
        candidate_id=candidate.candidate_id,
        source_url=candidate.source_url,
        source_platform=candidate.source_platform,
        status=candidate.status,
        tags=list(candidate.tags),
        source_quality=candidate.source_quality,
        age_rating=candidate.age_rating,
        quality_score=candidate.quality_score,
        gender=candidate.attributes.gender,
        species=candidate.attributes.species,
        style=candidate.attributes.style,
        needs_review=candidate.needs_review,
        rejection_reason=candidate.rejection_reason,
        entry_id=candidate.entry_id,
        discovered_at=candidate.discovered_at,
        curated_at=candidate.curated_at,
    )


def compute_pipeline_stats(
    session: DbSession,
    now: datetime,
    recent_runs: int = 5,
) -> PipelineStats:
    """Snapshot of queue sizes, pool mix and recent batch runs.

    Args:
        session: Database session.
        now: Current time; defines "today" for consumed_today.
        recent_runs: Number of most recent run logs to include.

    Returns:
        PipelineStats for GetStats.
    """
    counts = repo.count_by_status(session)
    pool = PoolDistribution(
        by_age_rating=repo.get_pool_distribution(session, "age_rating"),
        by_gender=repo.get_pool_distribution(session, "gender"),
        by_species=repo.get_pool_distribution(session, "species"),
    )
    runs = repo.get_recent_run_logs(session, recent_runs) if recent_runs > 0 else []
    return PipelineStats(
        pending_count=counts.get("pending", 0),
        approved_count=counts.get("approved", 0),
        rejected_count=counts.get("rejected", 0),
        consumed_count=counts.get("consumed", 0),
        generation_failed_count=counts.get("generation_failed", 0),
        flagged_for_review_count=repo.count_flagged_for_review(session),
        consumed_today=repo.count_consumed_since(session, start_of_utc_day(now)),
        pool=pool,
        recent_runs=[to_run_summary(r) for r in runs],
    )


def list_candidate_page(
    session: DbSession,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> CandidatePage:
    """One page of candidates, newest discovery first."""
    if offset < 0:
        raise ValueError(f"offset must be >= 0, got {offset}")
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    items, total = repo.list_candidates(session, status=status, offset=offset, limit=limit)
    return CandidatePage(
        items=[to_candidate_detail(c) for c in items],
        total=total,
        offset=offset,
        limit=limit,
    )
