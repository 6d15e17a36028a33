"""Domain models for curio.

Pure Python dataclasses representing domain entities.
These models are independent of SQLAlchemy and used throughout
the application for clean separation from the database layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

UNKNOWN = "unknown"


# ============================================================================
# Candidate Domain
# ============================================================================

CurationStatus = Literal["pending", "approved", "rejected", "consumed", "generation_failed"]

# Forward-only lifecycle: pending -> {approved, rejected} -> {consumed, generation_failed}
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"approved", "rejected"}),
    "approved": frozenset({"consumed", "generation_failed"}),
    "rejected": frozenset(),
    "consumed": frozenset(),
    "generation_failed": frozenset(),
}

TERMINAL_CURATION_STATUSES = frozenset({"approved", "rejected", "consumed", "generation_failed"})

SafetyTier = Literal["sfw", "soft", "mature", "explicit"]
AgeRating = Literal["L", "TEN", "TWELVE", "FOURTEEN", "SIXTEEN", "EIGHTEEN"]
Gender = Literal["female", "male", "non-binary", "unknown"]

# Ordered lowest -> highest
AGE_RATINGS: tuple[str, ...] = ("L", "TEN", "TWELVE", "FOURTEEN", "SIXTEEN", "EIGHTEEN")

# Tiers other than explicit map onto the lowest, middle and highest rating
TIER_AGE_RATING: dict[str, str] = {
    "sfw": "L",
    "soft": "FOURTEEN",
    "mature": "EIGHTEEN",
}

GENDERS: tuple[str, ...] = ("female", "male", "non-binary", UNKNOWN)

DiversityDimension = Literal["age_rating", "gender", "species", "style"]
DIMENSIONS: tuple[str, ...] = ("age_rating", "gender", "species", "style")


def can_transition(current: str, target: str) -> bool:
    """Whether a status change moves strictly forward."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def normalize_gender(value: str | None) -> str:
    """Map free-form gender labels onto the fixed Gender set."""
    if not value:
        return UNKNOWN
    label = value.strip().lower().replace("_", "-")
    if label in ("female", "woman", "girl", "f"):
        return "female"
    if label in ("male", "man", "boy", "m"):
        return "male"
    if label in ("non-binary", "nonbinary", "nb", "androgynous"):
        return "non-binary"
    return UNKNOWN


def normalize_label(value: str | None) -> str:
    """Lower-case a species/style label, falling back to UNKNOWN."""
    if not value or not value.strip():
        return UNKNOWN
    return value.strip().lower()


@dataclass(frozen=True)
class CandidateAttributes:
    """Demographic and style attributes of a candidate.

    Each field is always set; extraction gaps use the UNKNOWN sentinel.
    """

    gender: str = UNKNOWN
    species: str = UNKNOWN
    style: str = UNKNOWN

    @classmethod
    def from_labels(
        cls, gender: str | None, species: str | None, style: str | None
    ) -> CandidateAttributes:
        return cls(
            gender=normalize_gender(gender),
            species=normalize_label(species),
            style=normalize_label(style),
        )


@dataclass
class CandidateEntity:
    """Domain model for a discovered candidate image."""

    candidate_id: str
    source_url: str
    source_platform: str
    status: CurationStatus
    discovered_at: datetime
    tags: list[str] = field(default_factory=list)
    source_id: str | None = None
    author: str | None = None
    source_quality: float | None = None
    visual_hash: str | None = None
    age_rating: AgeRating | None = None
    safety_tier: SafetyTier | None = None
    quality_score: float | None = None
    quality_subscores: dict[str, float] = field(default_factory=dict)
    content_categories: list[str] = field(default_factory=list)
    attributes: CandidateAttributes = field(default_factory=CandidateAttributes)
    needs_review: bool = False
    rejection_reason: str | None = None
    entry_id: str | None = None
    generation_error: str | None = None
    requeue_count: int = 0
    curated_at: datetime | None = None
    consumed_at: datetime | None = None

    def dimension_value(self, dimension: str) -> str:
        """Value of this candidate in a diversity dimension."""
        if dimension == "age_rating":
            return self.age_rating or UNKNOWN
        if dimension == "gender":
            return self.attributes.gender
        if dimension == "species":
            return self.attributes.species
        if dimension == "style":
            return self.attributes.style
        raise ValueError(f"Unknown diversity dimension: {dimension}")


# ============================================================================
# Batch Run Domain
# ============================================================================

BatchRunStatus = Literal["running", "completed", "cancelled"]


@dataclass
class BatchErrorRecord:
    """Structured per-candidate failure in a batch run."""

    candidate_id: str
    error_kind: str
    message: str
    severity: str = "high"

    def to_dict(self) -> dict[str, str]:
        return {
            "candidate_id": self.candidate_id,
            "error_kind": self.error_kind,
            "message": self.message,
            "severity": self.severity,
        }


@dataclass
class BatchRunLogEntity:
    """Domain model for one batch orchestrator execution."""

    run_id: str
    scheduled_at: datetime
    started_at: datetime
    requested_size: int
    status: BatchRunStatus = "running"
    trigger: str = "manual"
    completed_at: datetime | None = None
    succeeded_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    selected_ids: list[str] = field(default_factory=list)
    entry_ids: list[str] = field(default_factory=list)
    errors: list[BatchErrorRecord] = field(default_factory=list)
    cost_estimate_usd: float | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Wall-clock duration, once the run is finalized."""
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()
