"""Tests for near-duplicate detection."""

import threading

import pytest
from conftest import make_candidate

from curio.curation.duplicates import (
    DuplicateIndex,
    ImageSignature,
    blurhash_thumbnail,
    hash_similarity,
    signature_similarity,
    tag_overlap,
)


def sig(candidate_id: str, url: str | None = None, **kwargs) -> ImageSignature:
    return ImageSignature(
        candidate_id=candidate_id,
        source_url=url or f"https://example.com/{candidate_id}.png",
        **kwargs,
    )


class TestSimilarity:
    """Similarity scoring."""

    def test_tag_overlap_is_jaccard(self):
        assert tag_overlap(frozenset({"a", "b"}), frozenset({"b", "c"})) == 1 / 3
        assert tag_overlap(frozenset(), frozenset()) == 0.0

    def test_hash_similarity(self):
        assert hash_similarity("ff00", "ff00") == 1.0
        assert hash_similarity("ff00", "ff01") == 1 - 1 / 16
        assert hash_similarity("ff", "ff00") == 0.0
        assert hash_similarity("zz", "yy") == 0.0
        assert hash_similarity("ABCD", "abcd") == 1.0

    def test_blurhash_near_identical(self):
        """BlurHash differing in one AC component decodes to nearly the same thumbnail."""
        a = "LEHV6nWB2yk8pyo0adR*.7kCMdnj"
        b = "LEHV6nWB2yk8pyo0adR*.7kCMdni"
        assert hash_similarity(a, b) >= 0.85
        assert hash_similarity("00TSUA", "00TSU9") >= 0.85

    def test_blurhash_opposite_colors(self):
        """Black and white 1x1 BlurHashes share no similarity."""
        assert hash_similarity("000000", "00TSUA") == 0.0

    def test_blurhash_thumbnail_decodes_solid_color(self):
        white = blurhash_thumbnail("00TSUA", size=4)
        assert white.shape == (4, 4, 3)
        assert white.min() == pytest.approx(1.0)
        assert blurhash_thumbnail("000000").max() == 0.0

    def test_malformed_blurhash_rejected(self):
        assert blurhash_thumbnail("LEHV6nWB2yk8") is None
        assert blurhash_thumbnail("00TSU\"") is None

    def test_exact_url_is_duplicate(self):
        a = sig("a", "https://example.com/x.png")
        b = sig("b", "https://example.com/x.png")
        assert signature_similarity(a, b) == 1.0

    def test_same_tags_and_author_is_duplicate(self):
        tags = frozenset({"anime", "fantasy", "girl", "magic"})
        a = sig("a", tags=tags, author="x")
        b = sig("b", tags=tags, author="x")
        assert signature_similarity(a, b) == 1.0

    def test_partial_tag_overlap_below_threshold(self):
        """Overlapping tags from the same author are similar but not duplicates."""
        a = sig("a", tags=frozenset({"anime", "fantasy", "girl", "magic"}), author="x")
        b = sig("b", tags=frozenset({"anime", "fantasy", "girl", "magic", "elf"}), author="x")
        assert signature_similarity(a, b) == pytest.approx((0.8 * 3 + 1) / 4)

    def test_sparse_metadata_never_matches(self):
        few = frozenset({"anime", "girl"})
        a = sig("a", tags=few, author="x")
        assert signature_similarity(a, sig("b", tags=few, author="x")) == 0.0
        full = frozenset({"anime", "girl", "elf"})
        assert signature_similarity(sig("a", tags=full, author="x"), sig("b", tags=full)) == 0.0

    def test_hashed_and_unhashed_fall_back_to_metadata(self):
        tags = frozenset({"anime", "girl", "elf"})
        a = sig("a", tags=tags, author="x", visual_hash="LEHV6nWB2yk8pyo0adR*.7kCMdnj")
        b = sig("b", tags=tags, author="x")
        assert signature_similarity(a, b) == 1.0

    def test_visual_hash_dominates(self):
        a = sig("a", visual_hash="abcd1234", tags=frozenset({"x"}))
        b = sig("b", visual_hash="abcd1234", tags=frozenset({"y"}))
        assert signature_similarity(a, b) == 1.0

    def test_unrelated_images(self):
        a = sig("a", tags=frozenset({"realistic", "landscape"}))
        b = sig("b", tags=frozenset({"anime", "girl"}))
        assert signature_similarity(a, b) == 0.0


class TestDuplicateIndex:
    """Bounded, thread-safe approved-signature window."""

    def test_first_seen_is_recorded(self):
        index = DuplicateIndex()
        assert index.check_and_add(sig("a", visual_hash="ff")) is None
        assert len(index) == 1

    def test_match_reports_closest(self):
        index = DuplicateIndex(threshold=0.85)
        index.check_and_add(sig("a", visual_hash="ffff"))
        match = index.check_and_add(sig("b", visual_hash="fffe"))
        assert match.match_id == "a"
        assert match.similarity > 0.9
        assert len(index) == 1

    def test_lookback_bounds_history(self):
        index = DuplicateIndex(lookback=2)
        for n, visual_hash in enumerate(["00000000", "ffffffff", "0f0f0f0f"]):
            assert index.check_and_add(sig(f"c{n}", visual_hash=visual_hash)) is None
        assert len(index) == 2
        assert index.find_match(sig("again", visual_hash="00000000")) is None

    def test_same_candidate_not_its_own_duplicate(self):
        index = DuplicateIndex()
        index.check_and_add(sig("a", visual_hash="ff"))
        assert index.find_match(sig("a", visual_hash="ff")) is None

    def test_seed_from_candidates(self):
        index = DuplicateIndex()
        index.seed([make_candidate(1, "approved", visual_hash="ABCD")])
        match = index.find_match(sig("new", visual_hash="abcd"))
        assert match is not None

    def test_concurrent_near_duplicates_only_one_passes(self):
        index = DuplicateIndex()
        results = []
        lock = threading.Lock()

        def worker(n):
            match = index.check_and_add(sig(f"c{n}", visual_hash="deadbeef"))
            with lock:
                results.append(match)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r is None) == 1
