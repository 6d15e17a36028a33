"""Repository pattern for database operations.

Encapsulates all SQLAlchemy queries, keeping domain logic pure.
Returns domain models (not SQLAlchemy entities) to external callers.

Every status write is a conditional single-row update keyed by candidate id
and the expected current status, so concurrent curation and consumption
cannot move a record backwards. Callers receive False when the row was not
in the expected state.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from curio.core.errors import InvalidTransitionError, RunLogFinalizedError
from curio.db.schema import BatchRunLog, CandidateAsset
from curio.models.domain import (
    BatchErrorRecord,
    BatchRunLogEntity,
    CandidateAttributes,
    CandidateEntity,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session as DbSession
else:
    DbSession = Session

# Re-export for external use
__all__ = ["DbSession"]

# Statuses that passed curation at some point
CURATION_PASSED = ("approved", "consumed", "generation_failed")


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Converters: SQLAlchemy -> Domain
# ============================================================================


def _candidate_to_entity(row: CandidateAsset) -> CandidateEntity:
    """Convert SQLAlchemy CandidateAsset to domain entity."""
    return CandidateEntity(
        candidate_id=row.candidate_id,
        source_url=row.source_url,
        source_platform=row.source_platform,
        status=row.status,
        discovered_at=_as_utc(row.discovered_at),
        tags=list(row.tags or []),
        source_id=row.source_id,
        author=row.author,
        source_quality=row.source_quality,
        visual_hash=row.visual_hash,
        age_rating=row.age_rating,
        safety_tier=row.safety_tier,
        quality_score=row.quality_score,
        quality_subscores=dict(row.quality_subscores or {}),
        content_categories=list(row.content_categories or []),
        attributes=CandidateAttributes(gender=row.gender, species=row.species, style=row.style),
        needs_review=row.needs_review,
        rejection_reason=row.rejection_reason,
        entry_id=row.entry_id,
        generation_error=row.generation_error,
        requeue_count=row.requeue_count,
        curated_at=_as_utc(row.curated_at),
        consumed_at=_as_utc(row.consumed_at),
    )


def _run_log_to_entity(row: BatchRunLog) -> BatchRunLogEntity:
    """Convert SQLAlchemy BatchRunLog to domain entity."""
    return BatchRunLogEntity(
        run_id=row.run_id,
        scheduled_at=_as_utc(row.scheduled_at),
        started_at=_as_utc(row.started_at),
        requested_size=row.requested_size,
        status=row.status,
        trigger=row.trigger,
        completed_at=_as_utc(row.completed_at),
        succeeded_count=row.succeeded_count,
        failed_count=row.failed_count,
        skipped_count=row.skipped_count,
        selected_ids=list(row.selected_ids or []),
        entry_ids=list(row.entry_ids or []),
        errors=[BatchErrorRecord(**e) for e in (row.errors or [])],
        cost_estimate_usd=row.cost_estimate_usd,
    )


# ============================================================================
# Candidate Repository
# ============================================================================


def get_candidate(session: DbSession, candidate_id: str) -> CandidateEntity | None:
    """Get candidate by ID."""
    row = (
        session.query(CandidateAsset).filter(CandidateAsset.candidate_id == candidate_id).first()
    )
    return _candidate_to_entity(row) if row else None


def get_known_source_urls(session: DbSession, source_urls: list[str]) -> set[str]:
    """Return the subset of source_urls already in the store."""
    if not source_urls:
        return set()
    rows = (
        session.query(CandidateAsset.source_url)
        .filter(CandidateAsset.source_url.in_(source_urls))
        .all()
    )
    return {r[0] for r in rows}


def create_candidate(session: DbSession, entity: CandidateEntity) -> bool:
    """Insert a new pending candidate.

    Flushes immediately so a unique-constraint race with another writer
    surfaces here. On conflict the session is rolled back, so callers
    commit after each successful insert.

    Returns:
        True if inserted, False if the source URL (or id) already exists.
    """
    row = CandidateAsset(
        candidate_id=entity.candidate_id,
        source_url=entity.source_url,
        source_platform=entity.source_platform,
        source_id=entity.source_id,
        author=entity.author,
        tags=list(entity.tags),
        source_quality=entity.source_quality,
        visual_hash=entity.visual_hash,
        status="pending",
        discovered_at=entity.discovered_at,
    )
    try:
        session.add(row)
        session.flush()
    except IntegrityError:
        session.rollback()
        return False
    return True


def get_pending_candidates(session: DbSession, limit: int) -> list[CandidateEntity]:
    """Get oldest pending candidates first."""
    rows = (
        session.query(CandidateAsset)
        .filter(CandidateAsset.status == "pending")
        .order_by(CandidateAsset.discovered_at.asc(), CandidateAsset.candidate_id.asc())
        .limit(limit)
        .all()
    )
    return [_candidate_to_entity(r) for r in rows]


def complete_curation(
    session: DbSession,
    candidate_id: str,
    status: str,
    *,
    safety_tier: str | None = None,
    age_rating: str | None = None,
    quality_score: float | None = None,
    quality_subscores: dict[str, float] | None = None,
    content_categories: list[str] | None = None,
    attributes: CandidateAttributes | None = None,
    needs_review: bool = False,
    rejection_reason: str | None = None,
    curated_at: datetime | None = None,
) -> bool:
    """Write the terminal curation result for a pending candidate.

    Derived fields are only ever written here, guarded by status='pending',
    so they are immutable once curation completes.

    Returns:
        True if the candidate was pending and is now updated.
    """
    if status not in ("approved", "rejected"):
        raise InvalidTransitionError(candidate_id, "pending", status)
    attributes = attributes or CandidateAttributes()
    updated = (
        session.query(CandidateAsset)
        .filter(
            CandidateAsset.candidate_id == candidate_id,
            CandidateAsset.status == "pending",
        )
        .update(
            {
                CandidateAsset.status: status,
                CandidateAsset.safety_tier: safety_tier,
                CandidateAsset.age_rating: age_rating,
                CandidateAsset.quality_score: quality_score,
                CandidateAsset.quality_subscores: quality_subscores,
                CandidateAsset.content_categories: content_categories,
                CandidateAsset.gender: attributes.gender,
                CandidateAsset.species: attributes.species,
                CandidateAsset.style: attributes.style,
                CandidateAsset.needs_review: needs_review,
                CandidateAsset.rejection_reason: rejection_reason,
                CandidateAsset.curated_at: curated_at or _utcnow(),
            },
            synchronize_session="fetch",
        )
    )
    return updated == 1


def get_recently_curated(session: DbSession, limit: int) -> list[CandidateEntity]:
    """Most recently approved candidates (including those since consumed)."""
    if limit <= 0:
        return []
    rows = (
        session.query(CandidateAsset)
        .filter(CandidateAsset.status.in_(CURATION_PASSED))
        .order_by(CandidateAsset.curated_at.desc())
        .limit(limit)
        .all()
    )
    return [_candidate_to_entity(r) for r in rows]


def get_approved_pool(session: DbSession) -> list[CandidateEntity]:
    """All approved, unconsumed candidates."""
    rows = (
        session.query(CandidateAsset)
        .filter(CandidateAsset.status == "approved", CandidateAsset.entry_id.is_(None))
        .all()
    )
    return [_candidate_to_entity(r) for r in rows]


def get_recent_consumed(session: DbSession, limit: int) -> list[CandidateEntity]:
    """Most recently consumed candidates, newest first."""
    rows = (
        session.query(CandidateAsset)
        .filter(CandidateAsset.status == "consumed")
        .order_by(CandidateAsset.consumed_at.desc())
        .limit(limit)
        .all()
    )
    return [_candidate_to_entity(r) for r in rows]


def mark_consumed(
    session: DbSession,
    candidate_id: str,
    entry_id: str,
    consumed_at: datetime | None = None,
) -> bool:
    """Link an approved candidate to its generated entry.

    Returns:
        False if the candidate was no longer approved.
    """
    updated = (
        session.query(CandidateAsset)
        .filter(
            CandidateAsset.candidate_id == candidate_id,
            CandidateAsset.status == "approved",
            CandidateAsset.entry_id.is_(None),
        )
        .update(
            {
                CandidateAsset.status: "consumed",
                CandidateAsset.entry_id: entry_id,
                CandidateAsset.consumed_at: consumed_at or _utcnow(),
                CandidateAsset.generation_error: None,
            },
            synchronize_session="fetch",
        )
    )
    return updated == 1


def mark_generation_failed(session: DbSession, candidate_id: str, error: str) -> bool:
    """Record exhausted generation retries for an approved candidate."""
    updated = (
        session.query(CandidateAsset)
        .filter(
            CandidateAsset.candidate_id == candidate_id,
            CandidateAsset.status == "approved",
        )
        .update(
            {
                CandidateAsset.status: "generation_failed",
                CandidateAsset.generation_error: error,
            },
            synchronize_session="fetch",
        )
    )
    return updated == 1


def requeue_generation_failed(session: DbSession, candidate_id: str) -> bool:
    """Operator requeue: generation_failed -> approved.

    Curation results are untouched; only the consumption attempt resets.
    """
    updated = (
        session.query(CandidateAsset)
        .filter(
            CandidateAsset.candidate_id == candidate_id,
            CandidateAsset.status == "generation_failed",
        )
        .update(
            {
                CandidateAsset.status: "approved",
                CandidateAsset.generation_error: None,
                CandidateAsset.requeue_count: CandidateAsset.requeue_count + 1,
            },
            synchronize_session="fetch",
        )
    )
    return updated == 1


def count_by_status(session: DbSession) -> dict[str, int]:
    """Candidate counts keyed by status."""
    rows = (
        session.query(CandidateAsset.status, func.count(CandidateAsset.candidate_id))
        .group_by(CandidateAsset.status)
        .all()
    )
    return {status: count for status, count in rows}


def count_flagged_for_review(session: DbSession) -> int:
    """Approved candidates flagged for optional manual review."""
    return (
        session.query(func.count(CandidateAsset.candidate_id))
        .filter(CandidateAsset.status == "approved", CandidateAsset.needs_review.is_(True))
        .scalar()
        or 0
    )


def count_consumed_since(session: DbSession, since: datetime) -> int:
    """Candidates consumed at or after since."""
    return (
        session.query(func.count(CandidateAsset.candidate_id))
        .filter(CandidateAsset.status == "consumed", CandidateAsset.consumed_at >= since)
        .scalar()
        or 0
    )


def get_pool_distribution(session: DbSession, column: str) -> dict[str, int]:
    """Approved-pool counts grouped by a candidate column."""
    attr = {
        "age_rating": CandidateAsset.age_rating,
        "gender": CandidateAsset.gender,
        "species": CandidateAsset.species,
    }[column]
    rows = (
        session.query(attr, func.count(CandidateAsset.candidate_id))
        .filter(CandidateAsset.status == "approved")
        .group_by(attr)
        .all()
    )
    return {(value or "unknown"): count for value, count in rows}


def list_candidates(
    session: DbSession,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[CandidateEntity], int]:
    """Page through candidates, newest discovery first.

    Returns:
        Tuple of (page of entities, total matching count).
    """
    query = session.query(CandidateAsset)
    if status is not None:
        query = query.filter(CandidateAsset.status == status)
    total = query.count()
    rows = (
        query.order_by(CandidateAsset.discovered_at.desc(), CandidateAsset.candidate_id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return [_candidate_to_entity(r) for r in rows], total


# ============================================================================
# Batch Run Log Repository
# ============================================================================


def create_run_log(session: DbSession, entity: BatchRunLogEntity) -> BatchRunLogEntity:
    """Create the in-progress run log record."""
    row = BatchRunLog(
        run_id=entity.run_id,
        status=entity.status,
        trigger=entity.trigger,
        scheduled_at=entity.scheduled_at,
        started_at=entity.started_at,
        requested_size=entity.requested_size,
        selected_ids=list(entity.selected_ids),
        entry_ids=list(entity.entry_ids),
        errors=[e.to_dict() for e in entity.errors],
    )
    session.add(row)
    return entity


def get_run_log(session: DbSession, run_id: str) -> BatchRunLogEntity | None:
    """Get run log by ID."""
    row = session.query(BatchRunLog).filter(BatchRunLog.run_id == run_id).first()
    return _run_log_to_entity(row) if row else None


def _open_run_log_row(session: DbSession, run_id: str) -> BatchRunLog:
    row = session.query(BatchRunLog).filter(BatchRunLog.run_id == run_id).first()
    if row is None:
        raise ValueError(f"BatchRunLog not found: {run_id}")
    if row.completed_at is not None:
        raise RunLogFinalizedError(f"Run log {run_id} is already finalized")
    return row


def update_run_log(session: DbSession, entity: BatchRunLogEntity) -> None:
    """Persist incremental progress of a running batch."""
    row = _open_run_log_row(session, entity.run_id)
    row.succeeded_count = entity.succeeded_count
    row.failed_count = entity.failed_count
    row.skipped_count = entity.skipped_count
    row.selected_ids = list(entity.selected_ids)
    row.entry_ids = list(entity.entry_ids)
    row.errors = [e.to_dict() for e in entity.errors]
    row.cost_estimate_usd = entity.cost_estimate_usd


def finalize_run_log(session: DbSession, entity: BatchRunLogEntity) -> None:
    """Write final counts and completion time; the log is immutable afterwards."""
    if entity.completed_at is None:
        raise ValueError("finalize_run_log requires completed_at")
    update_run_log(session, entity)
    row = _open_run_log_row(session, entity.run_id)
    row.status = entity.status
    row.completed_at = entity.completed_at
    row.duration_seconds = entity.duration_seconds


def get_recent_run_logs(session: DbSession, limit: int = 5) -> list[BatchRunLogEntity]:
    """Most recent run logs by scheduled time."""
    rows = session.query(BatchRunLog).order_by(BatchRunLog.scheduled_at.desc()).limit(limit).all()
    return [_run_log_to_entity(r) for r in rows]


def get_running_run_logs(session: DbSession) -> list[BatchRunLogEntity]:
    """Run logs that have not been finalized."""
    rows = session.query(BatchRunLog).filter(BatchRunLog.completed_at.is_(None)).all()
    return [_run_log_to_entity(r) for r in rows]


# ============================================================================
# Batch Operations
# ============================================================================


def commit(session: DbSession) -> None:
    """Commit current transaction."""
    session.commit()
