"""Shared pytest fixtures for curio tests."""

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from curio.config import Settings
from curio.core.identity import compute_candidate_id
from curio.db import repo
from curio.db.schema import Base
from curio.models.domain import CandidateAttributes, CandidateEntity

BASE_TIME = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def no_sleep(seconds: float) -> None:
    """Sleep stand-in so retries and delays never block a test."""


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing.

    StaticPool keeps one connection so worker threads see the same database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    """Settings with no real delays and no .env lookup."""
    return Settings(
        _env_file=None,
        inter_item_delay_seconds=0.0,
        retry_base_delay_seconds=0.0,
        collaborator_timeout_seconds=5.0,
        generation_timeout_seconds=5.0,
        generation_grace_seconds=0.0,
    )


def make_candidate(
    index: int,
    status: str = "pending",
    *,
    url: str | None = None,
    gender: str = "unknown",
    species: str = "unknown",
    style: str = "unknown",
    age_rating: str | None = "L",
    quality_score: float | None = 7.0,
    tags: list[str] | None = None,
    author: str | None = None,
    visual_hash: str | None = None,
    discovered_at: datetime | None = None,
) -> CandidateEntity:
    """Build an in-memory candidate (no database)."""
    url = url or f"https://img.example.com/{index:04d}.png"
    return CandidateEntity(
        candidate_id=compute_candidate_id(url),
        source_url=url,
        source_platform="test",
        status=status,
        discovered_at=discovered_at or BASE_TIME + timedelta(minutes=index),
        tags=list(tags or []),
        author=author,
        visual_hash=visual_hash,
        age_rating=age_rating if status != "pending" else None,
        quality_score=quality_score if status != "pending" else None,
        attributes=CandidateAttributes(gender=gender, species=species, style=style),
    )


@pytest.fixture
def add_candidate(session):
    """Factory inserting a candidate and walking it to the requested status."""
    counter = itertools.count()

    def _add(
        status: str = "pending",
        *,
        needs_review: bool = False,
        consumed_at: datetime | None = None,
        **fields,
    ) -> CandidateEntity:
        index = next(counter)
        entity = make_candidate(index, status, **fields)
        assert repo.create_candidate(session, entity)
        if status != "pending":
            rejected = status == "rejected"
            repo.complete_curation(
                session,
                entity.candidate_id,
                "rejected" if rejected else "approved",
                safety_tier="sfw",
                age_rating=entity.age_rating,
                quality_score=entity.quality_score,
                attributes=entity.attributes,
                needs_review=needs_review,
                rejection_reason="low-quality" if rejected else None,
                curated_at=entity.discovered_at + timedelta(minutes=1),
            )
        if status == "consumed":
            repo.mark_consumed(
                session,
                entity.candidate_id,
                f"entry-{index:04d}",
                consumed_at or BASE_TIME + timedelta(hours=1, minutes=index),
            )
        if status == "generation_failed":
            repo.mark_generation_failed(session, entity.candidate_id, "generator down")
        repo.commit(session)
        return repo.get_candidate(session, entity.candidate_id)

    return _add
