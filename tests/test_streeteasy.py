from __future__ import annotations

import httpx
import pytest

from src.crawlers.base import (
    ListingMeta,
    supports_fetch,
    supports_query_discovery,
)
from src.crawlers.streeteasy import (
    StreetEasyAdapter,
    StreetEasyImportAdapter,
    parse_streeteasy_html,
)
from src.http.firecrawl import ConfigurationError, FirecrawlClient
from src.http.rate_limit import RateLimiter

LISTING_URL = "https://streeteasy.com/building/350-east-52nd-street-new_york/2g"

LISTING_HTML = """
<html>
<head>
  <title>350 East 52nd Street #2G - StreetEasy</title>
  <meta property="og:image" content="https://photos.streeteasy.com/2g/1.jpg">
</head>
<body>
  <nav><a href="/">Home</a><a href="/manhattan">Manhattan</a></nav>
  <h1 data-testid="listing-title">350 East 52nd Street #2G</h1>
  <div data-testid="listing-neighborhood">Turtle Bay, Manhattan</div>
  <div data-testid="price">$3,500</div>
  <div data-testid="beds">1 bed</div>
  <div data-testid="baths">1 bath</div>
  <p data-testid="listing-description">No fee. Bright unit facing the river.</p>
</body>
</html>
"""


@pytest.mark.anyio
async def test_parse_listing_page_with_metadata_geo() -> None:
    listing = parse_streeteasy_html(
        LISTING_HTML,
        ListingMeta(url=LISTING_URL),
        {"geo.position": "40.7551;-73.9652"},
    )

    assert listing.title == "350 East 52nd Street #2G"
    assert listing.address == "350 East 52nd Street #2G"
    assert listing.unit == "2G"
    assert listing.borough == "Manhattan"
    assert listing.neighborhood == "Turtle Bay"
    assert listing.rent_gross == 3500
    assert listing.bedrooms == 1.0
    assert listing.bathrooms == 1.0
    assert listing.broker_fee is False
    assert listing.description == "No fee. Bright unit facing the river."
    assert listing.images == ["https://photos.streeteasy.com/2g/1.jpg"]
    assert listing.lat == pytest.approx(40.7551)
    assert listing.lng == pytest.approx(-73.9652)


@pytest.mark.anyio
async def test_parse_falls_back_to_page_text() -> None:
    html = (
        "<html><head><title>Studio on Avenue B | StreetEasy</title></head>"
        "<body><p>Studio apartment, $2,150 per month, broker fee applies.</p></body></html>"
    )

    listing = parse_streeteasy_html(
        html, ListingMeta(url="https://streeteasy.com/rental/123/brooklyn/x")
    )

    assert listing.title == "Studio on Avenue B"
    assert listing.rent_gross == 2150
    assert listing.bedrooms == 0.0
    assert listing.broker_fee is True
    assert listing.lat is None


def _firecrawl(handler, api_key: str = "fc-test") -> FirecrawlClient:
    return FirecrawlClient(
        api_key, RateLimiter(0), transport=httpx.MockTransport(handler)
    )


@pytest.mark.anyio
async def test_fetch_renders_through_firecrawl_and_parse_uses_metadata() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "html": LISTING_HTML,
                    "metadata": {"ICBM": "40.7551, -73.9652"},
                },
            },
        )

    firecrawl = _firecrawl(handler)
    adapter = StreetEasyAdapter(firecrawl)
    try:
        fetched = await adapter.fetch(LISTING_URL)
        listing = adapter.parse(fetched.content, ListingMeta(url=LISTING_URL))
    finally:
        await firecrawl.aclose()

    assert fetched.http_status == 200
    assert listing.lat == pytest.approx(40.7551)
    assert listing.lng == pytest.approx(-73.9652)


@pytest.mark.anyio
async def test_discover_by_query_keeps_listing_urls_only() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "success": True,
                "links": [
                    LISTING_URL,
                    "https://streeteasy.com/building/the-dean",
                    "https://streeteasy.com/for-rent/nyc",
                ],
            },
        )

    firecrawl = _firecrawl(handler)
    adapter = StreetEasyAdapter(firecrawl)
    try:
        discovered = await adapter.discover_by_query(adapter.discovery_query, 100)
    finally:
        await firecrawl.aclose()

    assert [item.url for item in discovered] == [LISTING_URL]
    assert discovered[0].source_listing_id == "350-east-52nd-street-new_york/2g"


@pytest.mark.anyio
async def test_missing_credential_disables_discovery() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    firecrawl = _firecrawl(handler, api_key="")
    adapter = StreetEasyAdapter(firecrawl)
    try:
        assert adapter.discovery_available() is False
        with pytest.raises(ConfigurationError):
            await adapter.discover()
        with pytest.raises(ConfigurationError):
            await adapter.fetch(LISTING_URL)
    finally:
        await firecrawl.aclose()


@pytest.mark.anyio
async def test_import_adapter_is_parse_only() -> None:
    adapter = StreetEasyImportAdapter()

    assert supports_fetch(adapter) is False
    assert supports_query_discovery(adapter) is False
    listing = adapter.parse(LISTING_HTML, ListingMeta(url=LISTING_URL))
    assert listing.rent_gross == 3500
    assert listing.lat is None
