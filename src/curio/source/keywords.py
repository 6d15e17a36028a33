"""Search keyword rotation.

Each curation cycle searches a different slice of the source by drawing
keywords from category pools in round-robin order. An operator-supplied
keyword list replaces the built-in pools.
"""

from __future__ import annotations

import random

CATEGORY_POOLS: dict[str, tuple[str, ...]] = {
    "styles": ("anime", "realistic", "semi-realistic", "cartoon", "manga", "chibi", "pixel art"),
    "themes": ("fantasy", "sci-fi", "cyberpunk", "medieval", "modern", "steampunk"),
    "archetypes": ("warrior", "mage", "knight", "ninja", "samurai", "adventurer", "pirate"),
    "genders": ("woman", "man", "girl", "boy", "non-binary"),
    "species": ("elf", "dwarf", "vampire", "demon", "angel", "robot", "cyborg", "alien"),
}


class KeywordRotation:
    """Category-balanced keyword picker."""

    def __init__(
        self,
        keywords: list[str] | None = None,
        per_query: int = 3,
        seed: int | None = None,
    ):
        """Initialize rotation.

        Args:
            keywords: Operator keyword list; empty or None uses CATEGORY_POOLS.
            per_query: Keywords per query.
            seed: RNG seed for repeatable rotations.
        """
        if per_query < 1:
            raise ValueError(f"per_query must be >= 1, got {per_query}")
        cleaned = [k.strip().lower() for k in keywords or [] if k.strip()]
        self.pools: dict[str, tuple[str, ...]] = (
            {"custom": tuple(dict.fromkeys(cleaned))} if cleaned else dict(CATEGORY_POOLS)
        )
        self.per_query = per_query
        self._rng = random.Random(seed)
        self._cursor = 0

    def next_keywords(self) -> list[str]:
        """Keywords for the next query, one category at a time."""
        categories = list(self.pools)
        picked: list[str] = []
        attempts = 0
        while len(picked) < self.per_query and attempts < self.per_query * 4:
            category = categories[self._cursor % len(categories)]
            self._cursor += 1
            attempts += 1
            choice = self._rng.choice(self.pools[category])
            if choice not in picked:
                picked.append(choice)
        return picked

    def all_keywords(self) -> list[str]:
        return [k for pool in self.pools.values() for k in pool]
