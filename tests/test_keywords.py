"""Tests for search keyword rotation."""

import pytest

from curio.source.keywords import CATEGORY_POOLS, KeywordRotation


class TestKeywordRotation:
    """Category-balanced keyword picks."""

    def test_picks_requested_count(self):
        rotation = KeywordRotation(per_query=3, seed=1)
        keywords = rotation.next_keywords()
        assert len(keywords) == 3
        assert len(set(keywords)) == 3

    def test_one_keyword_per_category_in_turn(self):
        """Consecutive picks walk the categories round-robin."""
        rotation = KeywordRotation(per_query=len(CATEGORY_POOLS), seed=7)
        keywords = rotation.next_keywords()
        for keyword, pool in zip(keywords, CATEGORY_POOLS.values()):
            assert keyword in pool

    def test_seeded_rotation_is_repeatable(self):
        first, second = KeywordRotation(seed=42), KeywordRotation(seed=42)
        assert [first.next_keywords() for _ in range(3)] == [
            second.next_keywords() for _ in range(3)
        ]

    def test_successive_queries_cover_different_categories(self):
        rotation = KeywordRotation(per_query=2, seed=3)
        first = rotation.next_keywords()
        second = rotation.next_keywords()
        assert first[0] in CATEGORY_POOLS["styles"]
        assert second[0] in CATEGORY_POOLS["archetypes"]

    def test_operator_keywords_replace_pools(self):
        rotation = KeywordRotation(["Elf ", "knight", "elf", ""], per_query=2, seed=0)
        assert rotation.pools == {"custom": ("elf", "knight")}
        assert set(rotation.next_keywords()) <= {"elf", "knight"}

    def test_small_custom_pool_does_not_loop_forever(self):
        rotation = KeywordRotation(["only"], per_query=3)
        assert rotation.next_keywords() == ["only"]

    def test_per_query_must_be_positive(self):
        with pytest.raises(ValueError):
            KeywordRotation(per_query=0)

    def test_all_keywords(self):
        rotation = KeywordRotation(["a", "b"])
        assert rotation.all_keywords() == ["a", "b"]
