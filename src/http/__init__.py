"""Outbound HTTP: rate limiting, fetch policy and the Firecrawl client."""

from src.http.fetch_policy import FetchPolicy, FetchResponse, TransportError
from src.http.firecrawl import (
    ConfigurationError,
    FirecrawlClient,
    FirecrawlError,
    FirecrawlPage,
)
from src.http.rate_limit import RateLimiter, domain_for_url

__all__ = [
    "ConfigurationError",
    "FetchPolicy",
    "FetchResponse",
    "FirecrawlClient",
    "FirecrawlError",
    "FirecrawlPage",
    "RateLimiter",
    "TransportError",
    "domain_for_url",
]
