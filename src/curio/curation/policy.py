"""Curation policy decisions.

Pure functions over collaborator outputs:
- safety: explicit content and minors in a suggestive context are rejected
  before anything else; every other tier maps onto an age rating
- quality: below the minimum is rejected, between minimum and the
  auto-approve threshold is approved (optionally flagged for review)

A rejection is raised as PolicyRejection so the pipeline can short-circuit
the remaining, more expensive steps.
"""

from __future__ import annotations

from dataclasses import dataclass

from curio.core.errors import PolicyRejection
from curio.models.domain import TIER_AGE_RATING
from curio.models.types import Classification, QualityScore

# Rejection reasons recorded on the candidate
REASON_EXPLICIT = "explicit-content"
REASON_MINOR = "minor-safety"
REASON_LOW_QUALITY = "low-quality"
REASON_DUPLICATE = "duplicate"

# Classifier categories indicating a minor is depicted
MINOR_CATEGORIES = frozenset({"minor", "child", "underage", "loli", "shota"})

# Classifier categories indicating suggestive framing regardless of tier
SUGGESTIVE_CATEGORIES = frozenset({"suggestive", "sexual", "nsfw", "lingerie", "nudity"})


@dataclass
class QualityDecision:
    """Outcome of the quality gate for an approved candidate.

    Attributes:
        composite: Composite score on the 0-10 scale.
        auto_approved: Score is at or above the auto-approve threshold.
        needs_review: Candidate is flagged for optional manual review.
    """

    composite: float
    auto_approved: bool
    needs_review: bool = False


def check_safety(classification: Classification) -> str:
    """Apply the content-safety rules.

    Args:
        classification: Classifier output.

    Returns:
        Age rating derived from the safety tier.

    Raises:
        PolicyRejection: For explicit content or a minor in a suggestive context.
    """
    categories = {c.strip().lower() for c in classification.categories}

    if classification.safety_tier == "explicit":
        raise PolicyRejection(REASON_EXPLICIT, "classified explicit")

    if categories & MINOR_CATEGORIES:
        suggestive = classification.safety_tier != "sfw" or bool(categories & SUGGESTIVE_CATEGORIES)
        if suggestive:
            raise PolicyRejection(
                REASON_MINOR, f"minor in {classification.safety_tier} context"
            )

    return TIER_AGE_RATING[classification.safety_tier]


def check_quality(
    score: QualityScore,
    min_score: float,
    auto_approve_threshold: float,
    require_manual_review: bool = False,
) -> QualityDecision:
    """Apply the quality gate.

    Args:
        score: Scorer output.
        min_score: Scores strictly below this are rejected.
        auto_approve_threshold: Scores at or above this skip review.
        require_manual_review: Flag in-between scores for review.

    Raises:
        PolicyRejection: If the composite score is below min_score.
    """
    composite = score.composite
    if composite < min_score:
        raise PolicyRejection(REASON_LOW_QUALITY, f"score {composite:.1f} < {min_score:.1f}")

    auto_approved = composite >= auto_approve_threshold
    return QualityDecision(
        composite=composite,
        auto_approved=auto_approved,
        needs_review=require_manual_review and not auto_approved,
    )
