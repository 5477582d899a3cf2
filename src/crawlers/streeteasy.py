"""StreetEasy adapters: Firecrawl-backed tracker and the parse-only import channel.

StreetEasy's robots.txt disallows automated access to listing pages, so the
tracker never fetches the site directly; rendering goes through Firecrawl and
user-captured pages arrive through the import adapter.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Final

from bs4 import BeautifulSoup

from src.crawlers.base import (
    DiscoveredListing,
    FetchResult,
    ListingMeta,
    QueryDiscoverableAdapter,
    SourceAdapter,
)
from src.crawlers.html import (
    BOROUGHS,
    element_text,
    load_html,
    normalize_borough,
    parse_money,
    parse_number,
    parse_text,
)
from src.db.repositories import NormalizedListingUpsert
from src.http.firecrawl import ConfigurationError, FirecrawlClient

logger = logging.getLogger(__name__)

BASE_URL: Final = "https://streeteasy.com"
LISTING_URL_PATTERN: Final = re.compile(
    r"/building/[a-z0-9_-]+/[a-z0-9_-]+$", re.IGNORECASE
)
_BUILDING_ID_PATTERN: Final = re.compile(r"/building/(.+)$")
_URL_BOROUGH_PATTERN: Final = re.compile(
    r"streeteasy\.com/(?:rental|building)/[^/]+/"
    r"(manhattan|brooklyn|queens|bronx|staten-island)",
    re.IGNORECASE,
)
_TITLE_UNIT_PATTERN: Final = re.compile(r"(?:\bunit|\bapt|#)\s*(\w+)", re.IGNORECASE)
_FALLBACK_PRICE_PATTERN: Final = re.compile(r"\$\s*([\d,]+)")
_BEDROOM_PATTERN: Final = re.compile(r"(\d+)\s*(?:bed(?:room)?s?|br)\b", re.IGNORECASE)
_BATHROOM_PATTERN: Final = re.compile(
    r"(\d+(?:\.\d+)?)\s*(?:bath(?:room)?s?|ba)\b", re.IGNORECASE
)
_GEO_PATTERN: Final = re.compile(r"(-?\d+(?:\.\d+)?)\s*[;,]\s*(-?\d+(?:\.\d+)?)")

SEED_LISTINGS: Final = (
    "https://streeteasy.com/building/the-oskar-luxury-apartments/ph7",
    "https://streeteasy.com/building/one-manhattan-square/62j",
    "https://streeteasy.com/building/38-sixth/1704",
    "https://streeteasy.com/building/923-5-avenue-new_york/4a",
    "https://streeteasy.com/building/canvas-albee-square/7f",
    "https://streeteasy.com/building/101-east-2nd-street-new_york/3c",
    "https://streeteasy.com/building/820-franklin-avenue-brooklyn/5e",
    "https://streeteasy.com/building/pacific-house/510",
    "https://streeteasy.com/building/1025-park-avenue/2b",
    "https://streeteasy.com/building/25_31-35-street-astoria/1",
    "https://streeteasy.com/building/321-west-47-street-new_york/1aa",
    "https://streeteasy.com/building/the-dean/514",
    "https://streeteasy.com/building/675-west-59th-street-new_york/304",
    "https://streeteasy.com/building/mercedes-house/2022",
    "https://streeteasy.com/building/brooklyn-point/23j",
    "https://streeteasy.com/building/the-volney/5a",
    "https://streeteasy.com/building/195-meserole-street-brooklyn/3r",
    "https://streeteasy.com/building/350-east-52nd-street-new_york/2g",
)


def _building_id(url: str) -> str:
    match = _BUILDING_ID_PATTERN.search(url)
    return match.group(1) if match else url


def _first_text(soup: BeautifulSoup, *selectors: str) -> str | None:
    for selector in selectors:
        text = parse_text(soup, selector)
        if text:
            return text
    return None


def _metadata_text(metadata: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = metadata.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _metadata_geo(metadata: dict[str, Any]) -> tuple[float | None, float | None]:
    raw = _metadata_text(metadata, "geo.position", "ICBM")
    if raw is None:
        return None, None
    match = _GEO_PATTERN.search(raw)
    if match is None:
        return None, None
    return float(match.group(1)), float(match.group(2))


def _clean_page_title(title: str | None) -> str | None:
    if not title:
        return None
    cleaned = re.sub(r"\s*\|.*$", "", title)
    cleaned = re.sub(r"\s*-\s*StreetEasy.*$", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip() or None


def parse_streeteasy_html(
    html: str,
    meta: ListingMeta,
    metadata: dict[str, Any] | None = None,
) -> NormalizedListingUpsert:
    """Parse a StreetEasy listing page with layered selector fallbacks."""

    soup = load_html(html)
    metadata = metadata or {}
    page_text = element_text(soup)

    title = _first_text(
        soup, '[data-testid="listing-title"]', ".listing-title h1", "h1"
    ) or _clean_page_title(
        parse_text(soup, "title") or _metadata_text(metadata, "og:title", "title")
    )

    address = title
    specific_address = _first_text(
        soup,
        '[data-testid="listing-address"]',
        ".listing-title__address",
        ".building-title a",
        '[class*="DetailAddress"]',
    )
    if specific_address:
        address = specific_address
        title = title or specific_address

    unit = _first_text(soup, '[data-testid="listing-unit"]', ".listing-title__unit")
    if unit is None and title:
        unit_match = _TITLE_UNIT_PATTERN.search(title)
        if unit_match:
            unit = unit_match.group(1)

    borough: str | None = None
    for crumb in soup.select(
        "nav a, .Breadcrumb a, [class*='breadcrumb'] a, [class*='Breadcrumb'] a"
    ):
        text = element_text(crumb)
        if text.lower() in BOROUGHS:
            borough = normalize_borough(text)
    if borough is None:
        url_match = _URL_BOROUGH_PATTERN.search(meta.url)
        if url_match:
            borough = normalize_borough(url_match.group(1))

    neighborhood: str | None = None
    neighborhood_text = _first_text(
        soup,
        '[data-testid="listing-neighborhood"]',
        ".listing-neighborhood",
        '[class*="neighborhood"]',
    )
    if neighborhood_text:
        parts = [part.strip() for part in neighborhood_text.split(",") if part.strip()]
        if parts:
            neighborhood = parts[0]
        if len(parts) >= 2 and borough is None:
            borough = normalize_borough(parts[-1])

    rent_gross = parse_money(
        _first_text(
            soup,
            '[data-testid="price"]',
            ".price",
            '[class*="Price"]',
            ".details_info_price",
            ".price--rental",
        )
    )
    if rent_gross is None:
        price_match = _FALLBACK_PRICE_PATTERN.search(page_text)
        if price_match:
            rent_gross = parse_money(f"${price_match.group(1)}")

    rent_net_effective = parse_money(
        _first_text(soup, '[class*="net-effective"]', '[class*="NetEffective"]')
    )

    bedrooms: float | None = None
    beds_text = _first_text(
        soup, '[data-testid="beds"]', ".detail_cell--beds", '[class*="bed"]'
    )
    if beds_text:
        if "studio" in beds_text.lower():
            bedrooms = 0.0
        else:
            bedrooms = parse_number(re.sub(r"[^0-9.]", "", beds_text))
    if bedrooms is None:
        bed_match = _BEDROOM_PATTERN.search(page_text)
        if bed_match:
            bedrooms = float(bed_match.group(1))
        elif "studio" in page_text[:2000].lower():
            bedrooms = 0.0

    bathrooms: float | None = None
    baths_text = _first_text(
        soup, '[data-testid="baths"]', ".detail_cell--baths", '[class*="bath"]'
    )
    if baths_text:
        bathrooms = parse_number(re.sub(r"[^0-9.]", "", baths_text))
    if bathrooms is None:
        bath_match = _BATHROOM_PATTERN.search(page_text)
        if bath_match:
            bathrooms = float(bath_match.group(1))

    lowered_text = page_text.lower()
    broker_fee: bool | None = None
    if "no fee" in lowered_text or "no broker fee" in lowered_text:
        broker_fee = False
    elif "broker fee" in lowered_text or "with fee" in lowered_text:
        broker_fee = True

    description = _first_text(
        soup,
        '[data-testid="listing-description"]',
        ".listing-description",
        '[class*="Description"]',
        ".description",
    ) or _metadata_text(metadata, "og:description", "description")

    images: list[str] = []
    for element in soup.select('meta[property="og:image"]'):
        content = element.get("content")
        if isinstance(content, str) and content.strip():
            images.append(content.strip())
    if not images:
        for element in soup.select("img"):
            src = element.get("src") or element.get("data-src") or ""
            if not isinstance(src, str):
                continue
            if (
                ("streeteasy" in src or "imgix" in src)
                and "logo" not in src
                and "icon" not in src
            ):
                images.append(src)
    if not images:
        og_image = metadata.get("og:image")
        if isinstance(og_image, str):
            images.append(og_image)
        elif isinstance(og_image, list):
            images.extend(item for item in og_image if isinstance(item, str))

    lat, lng = _metadata_geo(metadata)

    return NormalizedListingUpsert(
        title=title or "Unknown",
        description=description,
        address=address,
        unit=unit,
        neighborhood=neighborhood,
        borough=borough,
        lat=lat,
        lng=lng,
        rent_gross=rent_gross,
        rent_net_effective=rent_net_effective,
        bedrooms=bedrooms,
        bathrooms=bathrooms,
        broker_fee=broker_fee,
        images=images,
    )


class StreetEasyAdapter(QueryDiscoverableAdapter):
    """Tracks a fixed seed list of building/unit pages rendered via Firecrawl."""

    name = "streeteasy"
    discovery_query = "building apartment for rent rental listing"

    def __init__(
        self,
        firecrawl: FirecrawlClient | None,
        *,
        seed_urls: tuple[str, ...] = SEED_LISTINGS,
    ) -> None:
        self._firecrawl = firecrawl
        self._seed_urls = seed_urls
        self._metadata: dict[str, dict[str, Any]] = {}

    def discovery_available(self) -> bool:
        return self._firecrawl is not None and self._firecrawl.configured

    def _require_firecrawl(self) -> FirecrawlClient:
        if self._firecrawl is None or not self._firecrawl.configured:
            raise ConfigurationError("streeteasy requires FIRECRAWL_API_KEY")
        return self._firecrawl

    async def discover(self) -> list[DiscoveredListing]:
        self._require_firecrawl()
        logger.info("[streeteasy] Using %s fixed seed listings", len(self._seed_urls))
        return [
            DiscoveredListing(url=url, source_listing_id=_building_id(url))
            for url in self._seed_urls
        ]

    async def discover_by_query(
        self, query: str, limit: int
    ) -> list[DiscoveredListing]:
        firecrawl = self._require_firecrawl()
        links = await firecrawl.map_site(BASE_URL, query, limit)
        return [
            DiscoveredListing(url=link, source_listing_id=_building_id(link))
            for link in links
            if LISTING_URL_PATTERN.search(link)
        ]

    async def fetch(self, url: str) -> FetchResult:
        firecrawl = self._require_firecrawl()
        page = await firecrawl.scrape(url)
        self._metadata[url] = page.metadata
        return FetchResult(
            http_status=200 if page.html else 404,
            content=page.html,
            final_url=url,
        )

    def parse(self, content: str, meta: ListingMeta) -> NormalizedListingUpsert:
        metadata = self._metadata.pop(meta.url, None)
        return parse_streeteasy_html(content, meta, metadata)


class StreetEasyImportAdapter(SourceAdapter):
    """Parse-only channel for user-supplied StreetEasy page source."""

    name = "streeteasy_import"

    def parse(self, content: str, meta: ListingMeta) -> NormalizedListingUpsert:
        return parse_streeteasy_html(content, meta)
