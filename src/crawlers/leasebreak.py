"""Leasebreak short-term rental adapter (direct fetch, HTML parse)."""

from __future__ import annotations

import logging
import re
from typing import Final

from bs4 import BeautifulSoup
from bs4.element import Tag

from src.crawlers.base import (
    DiscoveredListing,
    FetchResult,
    ListingMeta,
    QueryDiscoverableAdapter,
)
from src.crawlers.html import (
    element_text,
    load_html,
    normalize_borough,
    parse_all_attr,
    parse_lease_term_months,
    parse_money,
    parse_number,
    parse_text,
    title_case,
)
from src.db.repositories import NormalizedListingUpsert
from src.http.fetch_policy import FetchPolicy, TransportError
from src.http.firecrawl import ConfigurationError, FirecrawlClient

logger = logging.getLogger(__name__)

BASE_URL: Final = "https://www.leasebreak.com"
SEED_URLS: Final = (
    f"{BASE_URL}/sublets/Brooklyn/Williamsburg",
    f"{BASE_URL}/sublets/Manhattan/East-Village",
    f"{BASE_URL}/sublets/Manhattan/Upper-West-Side",
    f"{BASE_URL}/sublets/Brooklyn/Park-Slope",
    f"{BASE_URL}/sublets/Manhattan/Midtown",
    f"{BASE_URL}/sublets/Queens/Astoria",
)
DETAIL_HREF_PATTERN: Final = re.compile(
    r'href="(/short-term-rental-details/(\d+)/[^"]+)"'
)
DETAIL_URL_PATTERN: Final = re.compile(r"/short-term-rental-details/(\d+)/")
MONTHLY_PRICE_PATTERN: Final = re.compile(r"\$\s*([\d,]+)\s*/\s*mo", re.IGNORECASE)


def _pricing_rows(soup: BeautifulSoup) -> list[Tag]:
    table = soup.find("table")
    if not isinstance(table, Tag):
        return []
    return [row for row in table.find_all("tr") if isinstance(row, Tag)]


def _icon_value(label_element: Tag, selector: str) -> str | None:
    container = label_element.find_parent("div")
    if container is None:
        return None
    value_element = container.select_one(selector)
    if value_element is None:
        return None
    return element_text(value_element) or None


def _section_header(soup: BeautifulSoup, heading: str) -> Tag | None:
    for header in soup.find_all("h2"):
        if isinstance(header, Tag) and element_text(header) == heading:
            return header
    return None


def _parse_features(soup: BeautifulSoup) -> list[str]:
    header = _section_header(soup, "Features")
    if header is None:
        return []
    container = header.find_next_sibling(["ul", "div"])
    if not isinstance(container, Tag):
        return []

    features: list[str] = []
    for element in container.find_all(["li", "span"]):
        text = element_text(element)
        if text and len(text) < 100:
            features.append(text)
    return features


def _parse_description(soup: BeautifulSoup) -> str | None:
    header = _section_header(soup, "Property Details")
    if header is None:
        return None

    parts: list[str] = []
    for sibling in header.find_next_siblings():
        if sibling.name == "h2":
            break
        text = element_text(sibling)
        if text:
            parts.append(text)
    return "\n".join(parts).strip() or None


def _laundry_from_features(features: list[str]) -> str | None:
    laundry: str | None = None
    for feature in features:
        lowered = feature.lower()
        if "washer" in lowered and "unit" in lowered:
            laundry = "in_unit"
        elif "laundry" in lowered and "building" in lowered:
            laundry = "in_building"
    return laundry


def _pet_policy_from_features(features: list[str]) -> str | None:
    policy: str | None = None
    for feature in features:
        lowered = feature.lower()
        if "pet friendly" in lowered:
            policy = "pets_allowed"
        elif "no pets" in lowered:
            policy = "no_pets"
        elif "cats" in lowered:
            policy = "cats_only"
        elif "dogs" in lowered:
            policy = "dogs_only"
    return policy


def parse_leasebreak_html(html: str, meta: ListingMeta) -> NormalizedListingUpsert:
    """Parse a Leasebreak detail page."""

    soup = load_html(html)

    page_title = parse_text(soup, "title")
    address = parse_text(soup, "h2") or (
        page_title.replace(" | LeaseBreak.com", "").strip() if page_title else None
    )

    neighborhood: str | None = None
    borough: str | None = None
    location_text = parse_text(soup, ".title-detail-apartments-text")
    if location_text:
        parts = [part.strip() for part in location_text.split(",") if part.strip()]
        if parts:
            neighborhood = title_case(parts[0])
        if len(parts) >= 2:
            borough = normalize_borough(parts[1])

    bedrooms: float | None = None
    bathrooms: float | None = None
    move_in_parts: list[str] = []
    for label_element in soup.select(".title-icon"):
        label = element_text(label_element)
        lowered = label.lower()
        if "bedroom" in lowered:
            value = _icon_value(label_element, ".nums-icon")
            if value and "studio" in value.lower():
                bedrooms = 0.0
            else:
                bedrooms = parse_number(value)
        elif "bathroom" in lowered:
            bathrooms = parse_number(_icon_value(label_element, ".nums-icon"))
        elif "move-in" in lowered or "move-out" in lowered:
            value = _icon_value(label_element, ".nums-icon, .date-icon")
            if value:
                move_in_parts.append(f"{label} {value}")

    rows = _pricing_rows(soup)
    rent_gross: int | None = None
    if len(rows) > 1:
        cells = rows[1].find_all("td")
        if len(cells) >= 2:
            rent_gross = parse_money(element_text(cells[1]))
    if rent_gross is None:
        price_match = MONTHLY_PRICE_PATTERN.search(html)
        if price_match:
            rent_gross = parse_money(f"${price_match.group(1)}")

    lease_terms: list[int] = []
    for row in rows[1:]:
        first_cell = row.find("td")
        if isinstance(first_cell, Tag):
            months = parse_lease_term_months(element_text(first_cell))
            if months:
                lease_terms.append(months)

    broker_fee: bool | None = None
    for element in soup.select(".listing-details-value"):
        text = element_text(element).lower()
        if "not charging a brokerage fee" in text:
            broker_fee = False
        elif "charging a brokerage fee" in text and "not" not in text:
            broker_fee = True

    features = _parse_features(soup)
    elevator = True if any("elevator" in f.lower() for f in features) else None
    doorman = True if any("doorman" in f.lower() for f in features) else None

    description = _parse_description(soup)
    if features:
        feature_line = "Features: " + ", ".join(features)
        description = f"{description}\n\n{feature_line}" if description else feature_line

    images = [
        src
        for src in parse_all_attr(soup, "img", "src")
        if "images.leasebreak.com" in src and "uploads" in src
    ]

    return NormalizedListingUpsert(
        title=address or "Unknown",
        description=description,
        address=address,
        neighborhood=neighborhood,
        borough=borough,
        rent_gross=rent_gross,
        bedrooms=bedrooms,
        bathrooms=bathrooms,
        broker_fee=broker_fee,
        lease_term_months=min(lease_terms) if lease_terms else None,
        move_in_cost_notes="; ".join(move_in_parts) or None,
        pet_policy=_pet_policy_from_features(features),
        laundry=_laundry_from_features(features),
        elevator=elevator,
        doorman=doorman,
        images=images,
    )


class LeasebreakAdapter(QueryDiscoverableAdapter):
    name = "leasebreak"
    discovery_query = "NYC sublet apartment short term rental for rent"

    def __init__(
        self,
        fetch_policy: FetchPolicy,
        firecrawl: FirecrawlClient | None = None,
        *,
        seed_urls: tuple[str, ...] = SEED_URLS,
    ) -> None:
        self._fetch_policy = fetch_policy
        self._firecrawl = firecrawl
        self._seed_urls = seed_urls

    def discovery_available(self) -> bool:
        return self._firecrawl is not None and self._firecrawl.configured

    async def discover(self) -> list[DiscoveredListing]:
        """Collect detail URLs linked from the neighbourhood seed pages."""

        seen: set[str] = set()
        results: list[DiscoveredListing] = []

        for seed_url in self._seed_urls:
            logger.info("[leasebreak] Discovering from %s", seed_url)
            try:
                response = await self._fetch_policy.fetch(seed_url)
            except TransportError as e:
                logger.warning("[leasebreak] Seed page %s failed: %s", seed_url, e)
                continue

            if response.http_status != 200:
                logger.warning(
                    "[leasebreak] Seed page %s returned %s",
                    seed_url,
                    response.http_status,
                )
                continue

            for match in DETAIL_HREF_PATTERN.finditer(response.content):
                full_url = f"{BASE_URL}{match.group(1)}"
                if full_url in seen:
                    continue
                seen.add(full_url)
                results.append(
                    DiscoveredListing(url=full_url, source_listing_id=match.group(2))
                )

        logger.info(
            "[leasebreak] Discovered %s unique detail URLs from %s seed pages",
            len(results),
            len(self._seed_urls),
        )
        return results

    async def discover_by_query(
        self, query: str, limit: int
    ) -> list[DiscoveredListing]:
        if self._firecrawl is None:
            raise ConfigurationError("leasebreak query discovery needs Firecrawl")

        links = await self._firecrawl.map_site(BASE_URL, query, limit)
        results: list[DiscoveredListing] = []
        for link in links:
            match = DETAIL_URL_PATTERN.search(link)
            if match is None:
                continue
            results.append(DiscoveredListing(url=link, source_listing_id=match.group(1)))
        return results

    async def fetch(self, url: str) -> FetchResult:
        response = await self._fetch_policy.fetch(url)
        return FetchResult(
            http_status=response.http_status,
            content=response.content,
            final_url=response.final_url,
        )

    def parse(self, content: str, meta: ListingMeta) -> NormalizedListingUpsert:
        return parse_leasebreak_html(content, meta)
