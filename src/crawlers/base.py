"""Source adapter contract and capability helpers."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Final

from src.db.repositories import NormalizedListingUpsert
from src.http.firecrawl import ConfigurationError

_NUMERIC_ID_PATTERN: Final = re.compile(r"/(\d+)/")
_BUILDING_ID_PATTERN: Final = re.compile(r"/building/(.+)$")


class PolicyViolationError(RuntimeError):
    """An adapter refused an operation the source's usage policy disallows."""


@dataclass(slots=True)
class DiscoveredListing:
    """Candidate listing URL returned by discovery."""

    url: str
    source_listing_id: str | None = None


@dataclass(slots=True)
class FetchResult:
    """Raw content retrieved for one listing URL."""

    http_status: int
    content: str
    final_url: str | None = None


@dataclass(slots=True)
class ListingMeta:
    url: str
    source_listing_id: str | None = None


class SourceAdapter(ABC):
    """Base contract shared by every source: a name and a parser.

    ``parse`` must be deterministic for the same content and metadata and must
    not raise on malformed non-empty input; fields that cannot be extracted
    are returned as None.
    """

    name: ClassVar[str]

    @abstractmethod
    def parse(self, content: str, meta: ListingMeta) -> NormalizedListingUpsert:
        """Extract listing fields from raw content."""
        ...


class CrawlableAdapter(SourceAdapter):
    """Adapter that may enumerate and fetch listing URLs itself."""

    @abstractmethod
    async def discover(self) -> list[DiscoveredListing]:
        """Enumerate candidate listing URLs without touching pipeline state."""
        ...

    @abstractmethod
    async def fetch(self, url: str) -> FetchResult:
        """Retrieve raw content for one URL."""
        ...


class QueryDiscoverableAdapter(CrawlableAdapter):
    """Crawlable adapter that can also discover listings from a topic query."""

    discovery_query: ClassVar[str] = ""

    def discovery_available(self) -> bool:
        """False when a credential required for query discovery is missing."""

        return True

    @abstractmethod
    async def discover_by_query(
        self, query: str, limit: int
    ) -> list[DiscoveredListing]:
        ...


def supports_fetch(adapter: SourceAdapter) -> bool:
    return isinstance(adapter, CrawlableAdapter)


def supports_query_discovery(adapter: SourceAdapter) -> bool:
    return isinstance(adapter, QueryDiscoverableAdapter)


def listing_id_from_url(url: str) -> str | None:
    """Best-effort source listing id: a numeric path segment or a building slug."""

    match = _NUMERIC_ID_PATTERN.search(url)
    if match:
        return match.group(1)
    match = _BUILDING_ID_PATTERN.search(url)
    if match:
        return match.group(1)
    return None


__all__ = [
    "ConfigurationError",
    "CrawlableAdapter",
    "DiscoveredListing",
    "FetchResult",
    "ListingMeta",
    "PolicyViolationError",
    "QueryDiscoverableAdapter",
    "SourceAdapter",
    "listing_id_from_url",
    "supports_fetch",
    "supports_query_discovery",
]
