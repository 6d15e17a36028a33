"""Mock collaborators for demo/testing.

Deterministic stand-ins for the source, classifier, scorer, attribute
extractor and entry generator. Outputs are derived from a hash of the image
reference, so the same image always gets the same answer. Each mock also
accepts per-reference overrides for scripted scenarios.
"""

from __future__ import annotations

import hashlib
import threading
import time

from curio.core.errors import CollaboratorError
from curio.core.identity import reference_digest
from curio.models.types import (
    Classification,
    ExtractedAttributes,
    GenerationRequest,
    GenerationResult,
    QualityScore,
    SearchPage,
    SourceImage,
)
from curio.providers.base import (
    AttributeExtractor,
    ClassifierProvider,
    EntryGenerator,
    ScorerProvider,
    SourceProvider,
)

MOCK_GENDERS = ("female", "male", "female", "male", "non-binary")
MOCK_SPECIES = ("human", "human", "human", "elf", "robot", "demon", "furry", "angel")
MOCK_STYLES = ("anime", "realistic", "semi-realistic", "cartoon")
MOCK_TAGS = ("anime", "fantasy", "warrior", "mage", "portrait", "sci-fi", "knight", "cyberpunk")


class MockSource(SourceProvider):
    """In-memory source serving a fixed list of images page by page."""

    name = "mock"

    def __init__(self, images: list[SourceImage]):
        self.images = list(images)
        self.calls = 0

    @classmethod
    def synthetic(cls, count: int, prefix: str = "https://images.example.com") -> MockSource:
        """Build a source with count synthetic images."""
        images = []
        for i in range(count):
            url = f"{prefix}/{i:05d}.png"
            digest = reference_digest(url, "source")
            images.append(
                SourceImage(
                    source_url=url,
                    source_id=str(i),
                    platform="mock",
                    tags=[MOCK_TAGS[(digest >> s) % len(MOCK_TAGS)] for s in (0, 3, 6)],
                    popularity=round(2.0 + (digest % 31) / 10, 1),
                    author=f"artist-{digest % 7}",
                )
            )
        return cls(images)

    def search(
        self,
        keywords: list[str],
        min_popularity: float,
        safety_tier: str,
        page_token: str | None = None,
        page_size: int = 100,
    ) -> SearchPage:
        self.calls += 1
        start = int(page_token) if page_token else 0
        end = start + page_size
        page = self.images[start:end]
        next_token = str(end) if end < len(self.images) else None
        return SearchPage(results=page, next_page_token=next_token)


class MockClassifier(ClassifierProvider):
    """Mostly-safe classifier: ~5% explicit, ~10% mature, ~15% soft."""

    def __init__(self, overrides: dict[str, Classification] | None = None):
        self.overrides = dict(overrides or {})
        self.calls: list[str] = []

    def classify(self, image_ref: str) -> Classification:
        self.calls.append(image_ref)
        if image_ref in self.overrides:
            return self.overrides[image_ref]
        bucket = reference_digest(image_ref, "classify") % 100
        if bucket < 5:
            tier = "explicit"
        elif bucket < 15:
            tier = "mature"
        elif bucket < 30:
            tier = "soft"
        else:
            tier = "sfw"
        return Classification(safety_tier=tier, categories=[], confidence=0.9)


class MockScorer(ScorerProvider):
    """Composite scores spread over roughly 3.0-9.9."""

    def __init__(self, overrides: dict[str, QualityScore] | None = None):
        self.overrides = dict(overrides or {})
        self.calls: list[str] = []

    def score(self, image_ref: str) -> QualityScore:
        self.calls.append(image_ref)
        if image_ref in self.overrides:
            return self.overrides[image_ref]
        digest = reference_digest(image_ref, "score")
        composite = round(3.0 + (digest % 70) / 10, 1)
        return QualityScore(
            composite=composite,
            subscores={
                "composition": composite,
                "clarity": round(min(10.0, composite + 0.5), 1),
                "technical": round(max(0.0, composite - 0.5), 1),
            },
        )


class MockAttributeExtractor(AttributeExtractor):
    """Picks attributes from fixed pools by hash."""

    def __init__(self, overrides: dict[str, ExtractedAttributes] | None = None):
        self.overrides = dict(overrides or {})
        self.calls: list[str] = []

    def extract_attributes(self, image_ref: str) -> ExtractedAttributes:
        self.calls.append(image_ref)
        if image_ref in self.overrides:
            return self.overrides[image_ref]
        digest = reference_digest(image_ref, "attributes")
        return ExtractedAttributes(
            gender=MOCK_GENDERS[digest % len(MOCK_GENDERS)],
            species=MOCK_SPECIES[(digest >> 4) % len(MOCK_SPECIES)],
            style=MOCK_STYLES[(digest >> 8) % len(MOCK_STYLES)],
        )


class MockEntryGenerator(EntryGenerator):
    """Generator with deterministic entry ids.

    Idempotency is guaranteed by deriving the entry id from the
    candidate id. Candidates listed in fail_ids always raise a
    CollaboratorError, as an unavailable generation service would.
    """

    def __init__(self, fail_ids: set[str] | None = None, cost_usd: float | None = 0.0):
        self.fail_ids = set(fail_ids or ())
        self.cost_usd = cost_usd
        self.calls: list[str] = []
        self.timeouts: list[float | None] = []
        self._lock = threading.Lock()

    def generate_entry(
        self, request: GenerationRequest, timeout: float | None = None
    ) -> GenerationResult:
        start_time = time.time()
        with self._lock:
            self.calls.append(request.candidate_id)
            self.timeouts.append(timeout)
        if request.candidate_id in self.fail_ids:
            raise CollaboratorError(f"mock generation failure for {request.candidate_id}")
        entry_id = "entry-" + hashlib.sha256(request.candidate_id.encode()).hexdigest()[:16]
        latency_ms = int((time.time() - start_time) * 1000)
        return GenerationResult(entry_id=entry_id, cost_usd=self.cost_usd, latency_ms=latency_ms)
