"""Database schema for curio.

Two tables: the candidate store and the batch run log. Unique constraints
and indexes enforce the correctness invariants the pipeline relies on.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class CandidateAsset(Base):
    """Externally discovered image and its curation lifecycle.

    Invariant: UNIQUE(source_url)
    Prevents re-ingesting the same candidate.
    """

    __tablename__ = "candidate_assets"

    candidate_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    source_platform: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    author: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    source_quality: Mapped[float | None] = mapped_column(Float, nullable=True)
    visual_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="pending")

    # Derived during curation (written once)
    safety_tier: Mapped[str | None] = mapped_column(String(16), nullable=True)
    age_rating: Mapped[str | None] = mapped_column(String(16), nullable=True)
    quality_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    quality_subscores: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    content_categories: Mapped[list | None] = mapped_column(JSON, nullable=True)
    gender: Mapped[str] = mapped_column(String(32), nullable=False, default="unknown")
    species: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    style: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Written once by the batch orchestrator
    entry_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    generation_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    requeue_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    discovered_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    curated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("source_url", name="uq_candidate_source_url"),
        UniqueConstraint("entry_id", name="uq_candidate_entry"),
        Index("ix_candidate_status_age_rating", "status", "age_rating"),
        Index("ix_candidate_consumed_at", "consumed_at"),
    )


class BatchRunLog(Base):
    """One execution of the batch orchestrator.

    Immutable once completed_at is set.
    """

    __tablename__ = "batch_run_logs"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="running")
    trigger: Mapped[str] = mapped_column(String(16), nullable=False, default="manual")
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    requested_size: Mapped[int] = mapped_column(Integer, nullable=False)
    succeeded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    selected_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    entry_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    errors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost_estimate_usd: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (Index("ix_batch_run_scheduled_at", "scheduled_at"),)
