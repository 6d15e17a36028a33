"""Source client: discovery of candidate images.

Pages through the source provider, drops low-popularity and already-known
images, and records every newly discovered image as a pending candidate.
Each page request spends one unit of the daily quota; once the quota is
spent the client raises QuotaExceeded instead of returning an empty list,
so callers can tell "nothing new" from "capped out".
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

from curio.config import Settings
from curio.core.errors import QuotaExceeded
from curio.core.identity import compute_candidate_id, normalize_source_url
from curio.core.quota import QuotaCounter, utc_now
from curio.core.retry import RetryPolicy, call_with_retry
from curio.db import repo
from curio.db.repo import DbSession
from curio.models.domain import CandidateEntity
from curio.models.types import SearchPage, SourceImage, SourceQuery
from curio.providers.base import SourceProvider

logger = logging.getLogger(__name__)


class SourceClient:
    """Fetches candidates from the source under a daily quota."""

    def __init__(
        self,
        session: DbSession,
        provider: SourceProvider,
        quota: QuotaCounter,
        settings: Settings,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize client.

        Args:
            session: Database session for candidate writes.
            provider: Source collaborator.
            quota: Shared daily request counter.
            settings: Page size, page cap and retry configuration.
            sleep: Backoff sleep (injected in tests).
            clock: Discovery timestamp source.
        """
        self.session = session
        self.provider = provider
        self.quota = quota
        self.settings = settings
        self.retry_policy = RetryPolicy.from_settings(
            settings, settings.collaborator_retry_attempts
        )
        self._sleep = sleep
        self._clock = clock

    def fetch_candidates(self, query: SourceQuery, limit: int) -> list[CandidateEntity]:
        """Discover up to limit new candidates.

        Args:
            query: Keywords, popularity floor and safety tier.
            limit: Maximum number of new candidates to record.

        Returns:
            Newly created pending candidates, in discovery order.

        Raises:
            QuotaExceeded: If the quota is spent before any page was fetched.
            CollaboratorError: If the source keeps failing after retries.
        """
        discovered: list[CandidateEntity] = []
        seen: set[str] = set()
        page_token: str | None = None
        filtered = 0
        duplicates = 0

        for page_number in range(self.settings.source_max_pages):
            try:
                page = self._fetch_page(query, page_token)
            except QuotaExceeded:
                if page_number == 0:
                    raise
                logger.warning(
                    f"Source quota exhausted after {page_number} page(s); "
                    f"returning {len(discovered)} new candidate(s)"
                )
                break

            for image in page.results:
                if len(discovered) >= limit:
                    break
                if image.popularity is not None and image.popularity < query.min_popularity:
                    filtered += 1
                    continue
                url = normalize_source_url(image.source_url)
                if url in seen:
                    duplicates += 1
                    continue
                seen.add(url)
                if repo.get_known_source_urls(self.session, [url]):
                    duplicates += 1
                    continue
                entity = self._to_candidate(image, url)
                if repo.create_candidate(self.session, entity):
                    repo.commit(self.session)
                    discovered.append(entity)
                else:
                    duplicates += 1

            page_token = page.next_page_token
            if len(discovered) >= limit or page_token is None:
                break

        logger.info(
            f"Fetched {len(discovered)} new candidate(s) for {query.keywords} "
            f"(below popularity: {filtered}, already known: {duplicates}, "
            f"quota remaining: {self.quota.remaining})"
        )
        return discovered

    def _fetch_page(self, query: SourceQuery, page_token: str | None) -> SearchPage:
        def _request() -> SearchPage:
            # Every attempt is a real request against the budget
            if not self.quota.try_acquire():
                raise QuotaExceeded(self.quota.used, self.quota.limit)
            return self.provider.search(
                keywords=query.keywords,
                min_popularity=query.min_popularity,
                safety_tier=query.safety_tier,
                page_token=page_token,
                page_size=self.settings.source_page_size,
            )

        return call_with_retry(
            _request,
            self.retry_policy,
            sleep=self._sleep,
            label=f"source search ({self.provider.name})",
        )

    def _to_candidate(self, image: SourceImage, url: str) -> CandidateEntity:
        return CandidateEntity(
            candidate_id=compute_candidate_id(url),
            source_url=url,
            source_platform=image.platform,
            status="pending",
            discovered_at=self._clock(),
            tags=[t.strip().lower() for t in image.tags if t.strip()],
            source_id=image.source_id,
            author=image.author,
            source_quality=image.popularity,
            visual_hash=image.visual_hash,
        )
