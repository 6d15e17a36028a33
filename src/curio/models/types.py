"""Pydantic models for curio.

Collaborator payloads (what providers accept and return) and the summaries
returned by the outward service interface.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

SafetyTierLiteral = Literal["sfw", "soft", "mature", "explicit"]


# ============================================================================
# Source collaborator
# ============================================================================


class SourceQuery(BaseModel):
    """Query descriptor for FetchCandidates."""

    keywords: list[str] = Field(default_factory=list)
    min_popularity: float = 0.0
    safety_tier: SafetyTierLiteral = "sfw"


class SourceImage(BaseModel):
    """One image record returned by the source."""

    source_url: str
    source_id: str | None = None
    platform: str = "civitai"
    tags: list[str] = Field(default_factory=list)
    popularity: float | None = None
    author: str | None = None
    visual_hash: str | None = None
    width: int | None = None
    height: int | None = None


class SearchPage(BaseModel):
    """One page of source search results."""

    results: list[SourceImage]
    next_page_token: str | None = None


# ============================================================================
# Curation collaborators
# ============================================================================


class Classification(BaseModel):
    """Content-safety classifier output."""

    safety_tier: SafetyTierLiteral
    age_rating: str | None = None
    categories: list[str] = Field(default_factory=list)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class QualityScore(BaseModel):
    """Quality scorer output on a 0-10 scale."""

    composite: float = Field(ge=0.0, le=10.0)
    subscores: dict[str, float] = Field(default_factory=dict)


class ExtractedAttributes(BaseModel):
    """Attribute extractor output; any field may be missing."""

    gender: str | None = None
    species: str | None = None
    style: str | None = None


# ============================================================================
# Entry-generation collaborator
# ============================================================================


class GenerationRequest(BaseModel):
    """Input for the entry-generation collaborator."""

    candidate_id: str
    image_ref: str
    age_rating: str | None
    gender: str
    species: str
    style: str
    tags: list[str] = Field(default_factory=list)


class GenerationResult(BaseModel):
    """Output of a successful generation call."""

    entry_id: str
    cost_usd: float | None = None
    latency_ms: int | None = None


# ============================================================================
# Outward summaries
# ============================================================================


class CurationSummary(BaseModel):
    """Counts for one curation invocation."""

    processed: int = 0
    approved: int = 0
    rejected: int = 0
    errored: int = 0
    flagged_for_review: int = 0
    rejection_reasons: dict[str, int] = Field(default_factory=dict)
    errors: list[dict[str, str]] = Field(default_factory=list)


class CurationCycleSummary(BaseModel):
    """Fetch + curate cycle result."""

    fetched: int
    quota_exhausted: bool
    fetch_error: str | None = None
    curation: CurationSummary


class BatchErrorDetail(BaseModel):
    """Per-candidate failure in a batch run."""

    candidate_id: str
    error_kind: str
    message: str
    severity: str = "high"


class BatchRunSummary(BaseModel):
    """Batch run log as returned to callers."""

    run_id: str
    status: Literal["running", "completed", "cancelled"]
    trigger: str
    scheduled_at: datetime
    started_at: datetime
    completed_at: datetime | None
    requested_size: int
    succeeded_count: int
    failed_count: int
    skipped_count: int
    selected_ids: list[str]
    entry_ids: list[str]
    errors: list[BatchErrorDetail]
    duration_seconds: float | None
    cost_estimate_usd: float | None


class FullCycleSummary(BaseModel):
    """Curation cycle followed by a batch run."""

    curation: CurationCycleSummary
    batch: BatchRunSummary


class CandidateDetail(BaseModel):
    """Candidate record as returned to callers."""

    candidate_id: str
    source_url: str
    source_platform: str
    status: str
    tags: list[str]
    source_quality: float | None
    age_rating: str | None
    quality_score: float | None
    gender: str
    species: str
    style: str
    needs_review: bool
    rejection_reason: str | None
    entry_id: str | None
    discovered_at: datetime
    curated_at: datetime | None


class CandidatePage(BaseModel):
    """One page of candidates."""

    items: list[CandidateDetail]
    total: int
    offset: int
    limit: int


class PoolDistribution(BaseModel):
    """Approved, unconsumed pool broken down by dimension."""

    by_age_rating: dict[str, int] = Field(default_factory=dict)
    by_gender: dict[str, int] = Field(default_factory=dict)
    by_species: dict[str, int] = Field(default_factory=dict)


class PipelineStats(BaseModel):
    """Operational snapshot for GetStats."""

    pending_count: int
    approved_count: int
    rejected_count: int
    consumed_count: int
    generation_failed_count: int
    flagged_for_review_count: int
    consumed_today: int
    pool: PoolDistribution
    recent_runs: list[BatchRunSummary]
