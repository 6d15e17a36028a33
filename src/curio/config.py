"""Runtime configuration for curio.

All operator-tunable options live on a single pydantic-settings class.
Values come from the environment (prefix ``CURIO_``) or a local ``.env``
file; dict-valued options such as diversity targets are read as JSON.

Components accept an explicit ``Settings`` instance so tests can build one
inline instead of touching the process environment.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AGE_RATING_TARGETS = {"L": 0.45, "FOURTEEN": 0.35, "EIGHTEEN": 0.20}

DEFAULT_GENDER_TARGETS = {
    "female": 0.45,
    "male": 0.40,
    "non-binary": 0.10,
    "unknown": 0.05,
}

DEFAULT_SPECIES_TARGETS = {
    "human": 0.50,
    "elf": 0.12,
    "robot": 0.08,
    "furry": 0.08,
    "demon": 0.06,
    "angel": 0.04,
    "unknown": 0.12,
}

DEFAULT_STYLE_TARGETS = {
    "anime": 0.40,
    "realistic": 0.25,
    "semi-realistic": 0.15,
    "cartoon": 0.10,
    "unknown": 0.10,
}


class Settings(BaseSettings):
    """Operator configuration surface."""

    model_config = SettingsConfigDict(env_prefix="CURIO_", env_file=".env", extra="ignore")

    db_path: Path = Field(default=Path("data/curio.db"), description="SQLite database file")

    # Source
    source_base_url: str = Field(default="https://civitai.com/api/v1")
    source_api_key: str | None = Field(default=None)
    source_request_timeout_seconds: float = Field(default=30.0, gt=0)
    daily_source_quota: int = Field(default=1000, ge=0, description="Source requests per UTC day")
    source_page_size: int = Field(default=100, ge=1, le=200)
    source_max_pages: int = Field(default=10, ge=1)
    min_source_popularity: float = Field(default=3.0, ge=0)
    source_safety_tier: str = Field(default="sfw")
    search_keywords: list[str] = Field(default_factory=list)
    keywords_per_query: int = Field(default=3, ge=1)
    fetch_limit: int = Field(default=100, ge=1)

    # Curation
    auto_approve_threshold: float = Field(default=4.5, ge=0, le=10)
    min_quality_score: float = Field(default=4.0, ge=0, le=10)
    require_manual_review: bool = False
    duplicate_similarity_threshold: float = Field(default=0.85, gt=0, le=1)
    duplicate_lookback: int = Field(default=500, ge=0)
    curation_concurrency: int = Field(default=2, ge=1, le=8)
    collaborator_timeout_seconds: float = Field(default=60.0, gt=0)
    collaborator_retry_attempts: int = Field(default=3, ge=1)

    # Batch generation
    daily_batch_ceiling: int = Field(default=24, ge=0)
    batch_size_per_run: int = Field(default=1, ge=1)
    generation_timeout_seconds: float = Field(default=300.0, gt=0)
    generation_grace_seconds: float = Field(
        default=60.0, ge=0, description="Extra wait for a timed-out generation before retrying"
    )
    generation_retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1)
    retry_max_delay_seconds: float = Field(default=60.0, ge=0)
    inter_item_delay_seconds: float = Field(default=5.0, ge=0)

    # Diversification
    diversity_history_window: int = Field(default=100, ge=1)
    max_consecutive_gender: int = Field(default=3, ge=1)
    max_consecutive_species: int = Field(default=2, ge=1)
    age_rating_targets: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_AGE_RATING_TARGETS)
    )
    gender_targets: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_GENDER_TARGETS))
    species_targets: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SPECIES_TARGETS)
    )
    style_targets: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_STYLE_TARGETS))

    # Scheduling
    curation_hour_utc: int = Field(default=3, ge=0, le=23)
    batch_interval_minutes: int = Field(default=60, ge=1)
    curation_max_items: int = Field(default=200, ge=1)

    @field_validator("age_rating_targets", "gender_targets", "species_targets", "style_targets")
    @classmethod
    def _non_negative_fractions(cls, value: dict[str, float]) -> dict[str, float]:
        for key, fraction in value.items():
            if fraction < 0:
                raise ValueError(f"target fraction for {key!r} must be >= 0, got {fraction}")
        return value

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> "Settings":
        if self.min_quality_score > self.auto_approve_threshold:
            raise ValueError(
                "min_quality_score must not exceed auto_approve_threshold "
                f"({self.min_quality_score} > {self.auto_approve_threshold})"
            )
        return self

    def targets_for(self, dimension: str) -> dict[str, float]:
        """Target-fraction map for a diversity dimension."""
        return {
            "age_rating": self.age_rating_targets,
            "gender": self.gender_targets,
            "species": self.species_targets,
            "style": self.style_targets,
        }[dimension]


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once from the environment."""
    return Settings()
