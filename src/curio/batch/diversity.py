"""Diversification selector.

Picks which approved candidates to consume next so the catalog drifts
toward the configured target mix across age rating, gender, species and
style. The observed mix is recomputed from consumption history on every
call; there is no stored running state.

Algorithm:
1. observed fraction per dimension value over the last N consumed entries
2. score = sum over dimensions of (target - observed) for the candidate's value
3. rank by score desc, quality desc, discovery asc, candidate id asc
4. greedy pick, skipping candidates that would extend a same-gender run
   beyond K or a same-species run beyond K2; skipped candidates stay in
   contention for later slots
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from curio.config import Settings
from curio.db import repo
from curio.db.repo import DbSession
from curio.models.domain import DIMENSIONS, CandidateEntity

logger = logging.getLogger(__name__)

# Scores are rounded so float noise cannot break ties differently across runs
SCORE_PRECISION = 9

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class DiversityState:
    """Observed value fractions per dimension over recent consumption.

    Attributes:
        sample_size: Number of consumed entries the fractions are taken over.
        observed: dimension -> value -> fraction in [0, 1].
    """

    sample_size: int
    observed: dict[str, dict[str, float]] = field(default_factory=dict)

    def fraction(self, dimension: str, value: str) -> float:
        return self.observed.get(dimension, {}).get(value, 0.0)


def compute_diversity_state(history: list[CandidateEntity]) -> DiversityState:
    """Build the observed distribution from consumed candidates.

    Args:
        history: Most recent consumed candidates (already windowed).
    """
    if not history:
        return DiversityState(sample_size=0, observed={d: {} for d in DIMENSIONS})

    total = len(history)
    observed: dict[str, dict[str, float]] = {}
    for dimension in DIMENSIONS:
        counts = Counter(c.dimension_value(dimension) for c in history)
        observed[dimension] = {value: count / total for value, count in counts.items()}
    return DiversityState(sample_size=total, observed=observed)


def diversity_score(
    candidate: CandidateEntity,
    state: DiversityState,
    targets: dict[str, dict[str, float]],
) -> float:
    """Underrepresentation score; higher means the candidate fills a gap.

    A value with no configured target counts as a target of 0.
    """
    score = 0.0
    for dimension in DIMENSIONS:
        value = candidate.dimension_value(dimension)
        target = targets.get(dimension, {}).get(value, 0.0)
        score += target - state.fraction(dimension, value)
    return round(score, SCORE_PRECISION)


def rank_candidates(
    pool: list[CandidateEntity],
    state: DiversityState,
    targets: dict[str, dict[str, float]],
) -> list[tuple[float, CandidateEntity]]:
    """Pool ordered best first, with deterministic tie-breaking."""
    scored = [(diversity_score(c, state, targets), c) for c in pool]
    scored.sort(
        key=lambda item: (
            -item[0],
            -(item[1].quality_score or 0.0),
            item[1].discovered_at or _EPOCH,
            item[1].candidate_id,
        )
    )
    return scored


def _trailing_run(selected: list[CandidateEntity], dimension: str, value: str) -> int:
    run = 0
    for candidate in reversed(selected):
        if candidate.dimension_value(dimension) != value:
            break
        run += 1
    return run


def select_batch(
    pool: list[CandidateEntity],
    history: list[CandidateEntity],
    targets: dict[str, dict[str, float]],
    target_size: int,
    max_consecutive_gender: int = 3,
    max_consecutive_species: int = 2,
) -> list[CandidateEntity]:
    """Select up to target_size candidates from pool.

    Returns fewer than target_size when the pool runs out or every
    remaining candidate would break a consecutive-run limit.

    Args:
        pool: Approved, unconsumed candidates.
        history: Recently consumed candidates defining the observed mix.
        targets: dimension -> value -> target fraction.
        target_size: Requested batch size.
        max_consecutive_gender: K, longest allowed same-gender run.
        max_consecutive_species: K2, longest allowed same-species run.

    Returns:
        Selected candidates in consumption order.
    """
    if target_size <= 0 or not pool:
        return []

    state = compute_diversity_state(history)
    remaining = [c for _, c in rank_candidates(pool, state, targets)]
    selected: list[CandidateEntity] = []

    while remaining and len(selected) < target_size:
        pick = None
        for index, candidate in enumerate(remaining):
            gender_run = _trailing_run(selected, "gender", candidate.attributes.gender)
            species_run = _trailing_run(selected, "species", candidate.attributes.species)
            if gender_run >= max_consecutive_gender or species_run >= max_consecutive_species:
                continue
            pick = index
            break
        if pick is None:
            logger.info(
                f"Run limits block all {len(remaining)} remaining candidate(s); "
                f"returning {len(selected)}/{target_size}"
            )
            break
        selected.append(remaining.pop(pick))

    return selected


class DiversificationSelector:
    """Database-backed SelectBatch."""

    def __init__(self, session: DbSession, settings: Settings):
        self.session = session
        self.settings = settings

    def targets(self) -> dict[str, dict[str, float]]:
        return {d: self.settings.targets_for(d) for d in DIMENSIONS}

    def select_batch(self, target_size: int) -> list[str]:
        """Candidate ids for the next batch, in consumption order."""
        pool = repo.get_approved_pool(self.session)
        history = repo.get_recent_consumed(self.session, self.settings.diversity_history_window)
        selected = select_batch(
            pool,
            history,
            self.targets(),
            target_size,
            max_consecutive_gender=self.settings.max_consecutive_gender,
            max_consecutive_species=self.settings.max_consecutive_species,
        )
        logger.info(
            f"Selected {len(selected)}/{target_size} from pool of {len(pool)} "
            f"(history window {len(history)})"
        )
        return [c.candidate_id for c in selected]
