"""Firecrawl API client used for rendering and site-map discovery."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Final

import httpx

from src.config import Settings
from src.http.rate_limit import RateLimiter, domain_for_url

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL: Final = "https://api.firecrawl.dev/v1"
DEFAULT_TIMEOUT_SECONDS: Final = 60.0
DEFAULT_MAP_LIMIT: Final = 500


class ConfigurationError(RuntimeError):
    """A required credential or setting is missing."""


class FirecrawlError(RuntimeError):
    """The Firecrawl API rejected a request or returned an unusable payload."""


@dataclass(slots=True)
class FirecrawlPage:
    """Rendered page returned by the scrape endpoint."""

    html: str
    metadata: dict[str, Any] = field(default_factory=dict)


class FirecrawlClient:
    """Thin async wrapper around the Firecrawl scrape and map endpoints."""

    def __init__(
        self,
        api_key: str,
        rate_limiter: RateLimiter,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._rate_limiter = rate_limiter
        self._base_url = base_url.rstrip("/")
        self._domain_key = domain_for_url(self._base_url)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        rate_limiter: RateLimiter,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "FirecrawlClient":
        return cls(
            settings.firecrawl_api_key,
            rate_limiter,
            base_url=settings.firecrawl_api_base_url,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self._api_key:
            raise ConfigurationError("FIRECRAWL_API_KEY is not set")

        await self._rate_limiter.wait(self._domain_key)

        url = f"{self._base_url}/{endpoint}"
        try:
            response = await self._client.post(
                url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise FirecrawlError(f"Firecrawl {endpoint} request failed: {e}") from e

        if response.status_code >= 400:
            raise FirecrawlError(
                f"Firecrawl {endpoint} error {response.status_code}: "
                f"{response.text[:500]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise FirecrawlError(f"Firecrawl {endpoint} returned invalid JSON") from e

        if not isinstance(data, dict) or not data.get("success"):
            raise FirecrawlError(
                f"Firecrawl {endpoint} failed: {str(data)[:500]}"
            )
        return data

    async def scrape(self, url: str) -> FirecrawlPage:
        """Render one page and return its HTML plus page metadata."""

        data = await self._post("scrape", {"url": url, "formats": ["html"]})
        body = data.get("data")
        if not isinstance(body, dict):
            raise FirecrawlError(f"Firecrawl scrape returned no data for {url}")

        metadata = body.get("metadata")
        return FirecrawlPage(
            html=str(body.get("html") or ""),
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    async def map_site(
        self, site_url: str, search: str, limit: int = DEFAULT_MAP_LIMIT
    ) -> list[str]:
        """Return de-duplicated links Firecrawl associates with a site and topic."""

        data = await self._post(
            "map", {"url": site_url, "search": search, "limit": limit}
        )
        raw_links = data.get("links")
        if not isinstance(raw_links, list):
            return []

        links: list[str] = []
        seen: set[str] = set()
        for raw_link in raw_links:
            # Newer API versions return {"url": ...} objects instead of strings.
            link = raw_link.get("url") if isinstance(raw_link, dict) else raw_link
            if not isinstance(link, str) or not link or link in seen:
                continue
            seen.add(link)
            links.append(link)

        logger.info(
            "Firecrawl map site=%s search=%r returned %s links",
            site_url,
            search,
            len(links),
        )
        return links

    async def aclose(self) -> None:
        await self._client.aclose()
