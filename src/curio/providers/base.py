"""Collaborator interfaces.

Each external dependency sits behind a narrow interface. Providers must
NOT write to the database or make curation decisions; they only answer
questions about an image reference. Failures are raised as exceptions
(CollaboratorError subclasses for infrastructure problems).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from curio.models.types import (
    Classification,
    ExtractedAttributes,
    GenerationRequest,
    GenerationResult,
    QualityScore,
    SearchPage,
)


class SourceProvider(ABC):
    """External image source."""

    name: str = "source"

    @abstractmethod
    def search(
        self,
        keywords: list[str],
        min_popularity: float,
        safety_tier: str,
        page_token: str | None = None,
        page_size: int = 100,
    ) -> SearchPage:
        """Fetch one page of image records.

        Args:
            keywords: Search keywords.
            min_popularity: Popularity floor the source may apply server-side.
            safety_tier: Highest content-safety tier requested.
            page_token: Continuation token from a previous page.
            page_size: Requested page size.

        Returns:
            SearchPage with results and the next page token (None at end).
        """
        pass


class ClassifierProvider(ABC):
    """Content-safety and age classification."""

    @abstractmethod
    def classify(self, image_ref: str) -> Classification:
        """Classify an image's safety tier and content categories."""
        pass


class ScorerProvider(ABC):
    """Visual quality scoring."""

    @abstractmethod
    def score(self, image_ref: str) -> QualityScore:
        """Score an image on a 0-10 scale with sub-dimension scores."""
        pass


class AttributeExtractor(ABC):
    """Demographic and style attribute extraction."""

    @abstractmethod
    def extract_attributes(self, image_ref: str) -> ExtractedAttributes:
        """Extract gender, species and style labels."""
        pass


class EntryGenerator(ABC):
    """Downstream catalog entry generation.

    Slow and fallible: the orchestrator wraps every call with a timeout
    and bounded retries.
    """

    @abstractmethod
    def generate_entry(
        self, request: GenerationRequest, timeout: float | None = None
    ) -> GenerationResult:
        """Generate a catalog entry from a curated candidate.

        Args:
            request: Candidate attributes and image reference.
            timeout: Caller deadline in seconds. Implementations should pass
                it to their own client so an overdue call ends by itself.
        """
        pass
