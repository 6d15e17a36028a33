"""Near-duplicate detection against recently approved candidates.

Similarity combines the signals available before attribute extraction:
- visual hash: when both sides carry one, it is the score. BlurHash strings
  (what Civitai returns) are decoded to small linear-RGB thumbnails and
  compared by mean absolute difference; equal-length hex perceptual hashes
  are compared bit by bit
- otherwise an identical source URL is a duplicate, and candidates that
  both carry a real tag set and a known author score a blend of tag
  Jaccard overlap (3) and same author (1)
"""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field

import numpy as np

from curio.models.domain import CandidateEntity

logger = logging.getLogger(__name__)

TAG_WEIGHT = 3.0
AUTHOR_WEIGHT = 1.0
MIN_TAGS_FOR_METADATA_MATCH = 3

BASE83 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz#$%*+,-.:;=?@[]^_{|}~"
_BASE83_INDEX = {char: n for n, char in enumerate(BASE83)}
THUMBNAIL_SIZE = 8
# Mean absolute linear-RGB difference at which thumbnails score 0
BLURHASH_TOLERANCE = 0.25


@dataclass(frozen=True)
class ImageSignature:
    """Comparable fingerprint of a candidate."""

    candidate_id: str
    source_url: str
    tags: frozenset[str] = field(default_factory=frozenset)
    author: str | None = None
    visual_hash: str | None = None

    @classmethod
    def from_candidate(cls, candidate: CandidateEntity) -> ImageSignature:
        # BlurHash is case-sensitive, so the hash is kept verbatim
        return cls(
            candidate_id=candidate.candidate_id,
            source_url=candidate.source_url,
            tags=frozenset(t.lower() for t in candidate.tags),
            author=candidate.author.lower() if candidate.author else None,
            visual_hash=candidate.visual_hash or None,
        )


@dataclass
class DuplicateMatch:
    """Closest stored signature at or above the threshold."""

    match_id: str
    similarity: float


def tag_overlap(a: frozenset[str], b: frozenset[str]) -> float:
    """Jaccard similarity of two tag sets."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def _decode83(chars: str) -> int:
    value = 0
    for char in chars:
        value = value * 83 + _BASE83_INDEX[char]
    return value


def _srgb_to_linear(value: int) -> float:
    v = value / 255.0
    if v <= 0.04045:
        return v / 12.92
    return ((v + 0.055) / 1.055) ** 2.4


def _sign_pow(value: float, exp: float) -> float:
    return math.copysign(abs(value) ** exp, value)


def blurhash_thumbnail(blurhash: str, size: int = THUMBNAIL_SIZE) -> np.ndarray | None:
    """Decode a BlurHash into a (size, size, 3) linear-RGB array.

    Returns None when the string is not a well-formed BlurHash.
    """
    if len(blurhash) < 6 or any(char not in _BASE83_INDEX for char in blurhash):
        return None

    size_flag = _decode83(blurhash[0])
    num_y = size_flag // 9 + 1
    num_x = size_flag % 9 + 1
    if len(blurhash) != 4 + 2 * num_x * num_y:
        return None

    dc = _decode83(blurhash[2:6])
    if dc > 0xFFFFFF:
        return None
    max_ac = (_decode83(blurhash[1]) + 1) / 166

    components = np.zeros((num_y, num_x, 3))
    rgb = (dc >> 16, (dc >> 8) & 255, dc & 255)
    components[0, 0] = [_srgb_to_linear(channel) for channel in rgb]
    for n in range(1, num_x * num_y):
        start = 4 + n * 2
        value = _decode83(blurhash[start : start + 2])
        quantized = (value // (19 * 19), (value // 19) % 19, value % 19)
        if quantized[0] > 18:
            return None
        ac = [_sign_pow((q - 9) / 9, 2.0) * max_ac for q in quantized]
        components[n // num_x, n % num_x] = ac

    grid = np.arange(size) / size
    basis_x = np.cos(np.pi * np.outer(grid, np.arange(num_x)))
    basis_y = np.cos(np.pi * np.outer(grid, np.arange(num_y)))
    # pixel[y, x] = sum_j sum_i basis_y[y, j] * basis_x[x, i] * components[j, i]
    return np.einsum("yj,xi,jic->yxc", basis_y, basis_x, components)


def blurhash_similarity(a: str, b: str) -> float | None:
    """Thumbnail similarity of two BlurHashes, or None if either is malformed."""
    thumb_a = blurhash_thumbnail(a)
    thumb_b = blurhash_thumbnail(b)
    if thumb_a is None or thumb_b is None:
        return None
    distance = float(np.mean(np.abs(thumb_a - thumb_b)))
    return max(0.0, 1.0 - distance / BLURHASH_TOLERANCE)


def hash_similarity(a: str, b: str) -> float:
    """Similarity of two visual hashes.

    BlurHash pairs compare decoded thumbnails; equal-length hex hashes
    compare bits case-insensitively. Anything else scores 0.
    """
    if a == b:
        return 1.0
    similarity = blurhash_similarity(a, b)
    if similarity is not None:
        return similarity
    if len(a) != len(b):
        return 0.0
    try:
        diff = int(a, 16) ^ int(b, 16)
    except ValueError:
        return 0.0
    bits = len(a) * 4
    return 1.0 - bin(diff).count("1") / bits


def signature_similarity(a: ImageSignature, b: ImageSignature) -> float:
    """Similarity in [0, 1] between two signatures."""
    if a.visual_hash and b.visual_hash:
        return hash_similarity(a.visual_hash, b.visual_hash)

    if a.source_url and a.source_url == b.source_url:
        return 1.0

    # Sparse metadata cannot tell two images apart
    if min(len(a.tags), len(b.tags)) < MIN_TAGS_FOR_METADATA_MATCH or not (a.author and b.author):
        return 0.0

    score = tag_overlap(a.tags, b.tags) * TAG_WEIGHT
    if a.author == b.author:
        score += AUTHOR_WEIGHT
    return score / (TAG_WEIGHT + AUTHOR_WEIGHT)


class DuplicateIndex:
    """Bounded window of approved signatures with atomic check-and-add.

    Shared by concurrent curation workers: two near-identical candidates
    evaluated at the same time cannot both pass.
    """

    def __init__(self, threshold: float = 0.85, lookback: int = 500):
        """Initialize index.

        Args:
            threshold: Similarity at or above which a candidate is a duplicate.
            lookback: Number of most recent approved signatures kept.
        """
        self.threshold = threshold
        self._signatures: deque[ImageSignature] = deque(maxlen=max(lookback, 0))
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._signatures)

    def seed(self, candidates: list[CandidateEntity]) -> None:
        """Load existing approved candidates, newest first as returned by the repo."""
        with self._lock:
            for candidate in reversed(candidates):
                self._signatures.append(ImageSignature.from_candidate(candidate))
        logger.debug(f"Duplicate index seeded with {len(self._signatures)} signature(s)")

    def find_match(self, signature: ImageSignature) -> DuplicateMatch | None:
        with self._lock:
            return self._best_match(signature)

    def check_and_add(self, signature: ImageSignature) -> DuplicateMatch | None:
        """Return the best duplicate match, or record the signature if unique."""
        with self._lock:
            match = self._best_match(signature)
            if match is None:
                self._signatures.append(signature)
            return match

    def _best_match(self, signature: ImageSignature) -> DuplicateMatch | None:
        best: DuplicateMatch | None = None
        for stored in self._signatures:
            if stored.candidate_id == signature.candidate_id:
                continue
            similarity = signature_similarity(signature, stored)
            if similarity >= self.threshold and (best is None or similarity > best.similarity):
                best = DuplicateMatch(match_id=stored.candidate_id, similarity=similarity)
        return best
