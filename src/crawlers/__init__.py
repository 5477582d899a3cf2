"""Source adapters."""

from src.crawlers.base import (
    ConfigurationError,
    CrawlableAdapter,
    DiscoveredListing,
    FetchResult,
    ListingMeta,
    PolicyViolationError,
    QueryDiscoverableAdapter,
    SourceAdapter,
    listing_id_from_url,
    supports_fetch,
    supports_query_discovery,
)
from src.crawlers.registry import (
    ADAPTER_NAMES,
    AUTOMATED_SOURCES,
    AdapterDeps,
    build_adapter,
    build_adapters,
)

__all__ = [
    "ADAPTER_NAMES",
    "AUTOMATED_SOURCES",
    "AdapterDeps",
    "ConfigurationError",
    "CrawlableAdapter",
    "DiscoveredListing",
    "FetchResult",
    "ListingMeta",
    "PolicyViolationError",
    "QueryDiscoverableAdapter",
    "SourceAdapter",
    "build_adapter",
    "build_adapters",
    "listing_id_from_url",
    "supports_fetch",
    "supports_query_discovery",
]
