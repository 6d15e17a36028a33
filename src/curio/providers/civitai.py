"""HTTP source provider for a Civitai-style image API.

Speaks the public ``GET /images`` endpoint: cursor pagination through
``metadata.nextCursor``, NSFW filtering through the ``nsfw`` parameter.
Transport failures, throttling and 5xx responses are raised as
SourceUnavailableError so the source client can retry them; other HTTP
errors propagate as httpx.HTTPStatusError.
"""

from __future__ import annotations

import logging

import httpx

from curio.config import Settings
from curio.core.errors import SourceUnavailableError
from curio.models.types import SearchPage, SourceImage
from curio.providers.base import SourceProvider

logger = logging.getLogger(__name__)

# Safety tier -> API nsfw filter value
NSFW_FILTER = {
    "sfw": "None",
    "soft": "Soft",
    "mature": "Mature",
    "explicit": "X",
}

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class CivitaiSource(SourceProvider):
    """Image source backed by the Civitai REST API."""

    name = "civitai"

    def __init__(
        self,
        base_url: str = "https://civitai.com/api/v1",
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
        sort: str = "Most Reactions",
        period: str = "Week",
    ):
        """Initialize provider.

        Args:
            base_url: API root (without trailing /images).
            api_key: Optional bearer token.
            timeout: Per-request timeout in seconds.
            client: Pre-built client (tests inject one with a mock transport).
            sort: Result ordering requested from the API.
            period: Time window requested from the API.
        """
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"), timeout=timeout, headers=headers
        )
        self.sort = sort
        self.period = period

    @classmethod
    def from_settings(cls, settings: Settings) -> CivitaiSource:
        return cls(
            base_url=settings.source_base_url,
            api_key=settings.source_api_key,
            timeout=settings.source_request_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def search(
        self,
        keywords: list[str],
        min_popularity: float,
        safety_tier: str,
        page_token: str | None = None,
        page_size: int = 100,
    ) -> SearchPage:
        params: dict[str, str | int] = {
            "limit": page_size,
            "sort": self.sort,
            "period": self.period,
            "nsfw": NSFW_FILTER.get(safety_tier, "None"),
        }
        if keywords:
            params["tags"] = ",".join(keywords)
        if page_token:
            params["cursor"] = page_token

        try:
            response = self._client.get("/images", params=params)
        except httpx.TransportError as e:
            raise SourceUnavailableError(f"civitai request failed: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            raise SourceUnavailableError(f"civitai returned HTTP {response.status_code}")
        response.raise_for_status()

        payload = response.json()
        items = payload.get("items", [])
        next_cursor = (payload.get("metadata") or {}).get("nextCursor")
        results = [self._to_source_image(item) for item in items if item.get("url")]

        logger.info(f"[civitai] fetched {len(results)} images (cursor={page_token})")
        return SearchPage(
            results=results,
            next_page_token=str(next_cursor) if next_cursor is not None else None,
        )

    @staticmethod
    def _to_source_image(item: dict) -> SourceImage:
        stats = item.get("stats") or {}
        post = item.get("post") or {}
        return SourceImage(
            source_url=item["url"],
            source_id=str(item["id"]) if item.get("id") is not None else None,
            platform="civitai",
            tags=[str(t) for t in item.get("tags") or []],
            popularity=stats.get("rating"),
            author=item.get("username") or post.get("user"),
            visual_hash=item.get("hash"),
            width=item.get("width"),
            height=item.get("height"),
        )
