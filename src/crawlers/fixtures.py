"""Local JSON fixture adapters mimicking StreetEasy and Craigslist payloads."""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Final
from urllib.parse import unquote, urlsplit

from src.crawlers.base import (
    DiscoveredListing,
    FetchResult,
    ListingMeta,
    QueryDiscoverableAdapter,
)
from src.crawlers.html import normalize_borough
from src.db.repositories import NormalizedListingUpsert
from src.domain.normalize import split_unit

logger = logging.getLogger(__name__)

UNTITLED: Final = "Untitled listing"


def _to_str(value: object | None) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _to_float(value: object | None) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    raw: int | float | str
    if isinstance(value, (int, float)):
        raw = value
    else:
        raw = str(value).replace(",", "").replace("$", "").strip()
        if raw == "":
            return None
    try:
        number = float(raw)
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_int(value: object | None) -> int | None:
    number = _to_float(value)
    return int(number) if number is not None else None


def _to_bool(value: object | None) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "y", "1"}:
            return True
        if lowered in {"false", "no", "n", "0"}:
            return False
    return None


def _to_str_list(value: object | None) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _load_json_object(content: str) -> dict[str, Any]:
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def _file_path_from_url(url: str) -> Path:
    return Path(unquote(urlsplit(url).path))


class _FixtureAdapter(QueryDiscoverableAdapter):
    """Discovers and fetches JSON files under ``<fixtures_dir>/<name>/``."""

    def __init__(self, fixtures_dir: Path) -> None:
        self._directory = Path(fixtures_dir) / self.name

    @property
    def directory(self) -> Path:
        return self._directory

    async def discover(self) -> list[DiscoveredListing]:
        if not self._directory.is_dir():
            logger.warning(
                "[%s] Fixture directory %s does not exist", self.name, self._directory
            )
            return []

        return [
            DiscoveredListing(url=path.resolve().as_uri(), source_listing_id=path.stem)
            for path in sorted(self._directory.glob("*.json"))
        ]

    async def discover_by_query(
        self, query: str, limit: int
    ) -> list[DiscoveredListing]:
        # Fixtures have no search index, every file is a candidate.
        return (await self.discover())[: max(0, limit)]

    async def fetch(self, url: str) -> FetchResult:
        path = _file_path_from_url(url)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return FetchResult(http_status=404, content="", final_url=url)
        return FetchResult(http_status=200, content=content, final_url=url)


class MockStreetEasyAdapter(_FixtureAdapter):
    name = "mock_streeteasy"

    def parse(self, content: str, meta: ListingMeta) -> NormalizedListingUpsert:
        data = _load_json_object(content)
        borough = _to_str(data.get("borough"))

        return NormalizedListingUpsert(
            title=_to_str(data.get("title")) or UNTITLED,
            description=_to_str(data.get("description")),
            address=_to_str(data.get("address")),
            unit=_to_str(data.get("unit")),
            neighborhood=_to_str(data.get("neighborhood")),
            borough=borough[:1].upper() + borough[1:] if borough else None,
            lat=_to_float(data.get("lat")),
            lng=_to_float(data.get("lng")),
            rent_gross=_to_int(data.get("rent")),
            rent_net_effective=_to_int(data.get("netEffectiveRent")),
            bedrooms=_to_float(data.get("bedrooms")),
            bathrooms=_to_float(data.get("bathrooms")),
            broker_fee=_to_bool(data.get("brokerFee")),
            lease_term_months=_to_int(data.get("leaseTermMonths")),
            pet_policy=_to_str(data.get("petPolicy")),
            laundry=_to_str(data.get("laundry")),
            elevator=_to_bool(data.get("elevator")),
            doorman=_to_bool(data.get("doorman")),
            images=_to_str_list(data.get("images")),
        )


def _craigslist_fee(value: object | None) -> bool | None:
    text = _to_str(value)
    if text is None:
        return None
    lowered = text.lower()
    if "no fee" in lowered:
        return False
    if "broker" in lowered or "fee" in lowered:
        return True
    return None


def _craigslist_pets(value: object | None) -> str | None:
    text = _to_str(value)
    if text is None:
        return None
    lowered = text.lower()
    if "no pet" in lowered:
        return "no_pets"
    if "dogs" in lowered and "cats" in lowered:
        return "pets_allowed"
    if "cats" in lowered:
        return "cats_only"
    if "dogs" in lowered:
        return "dogs_only"
    return text


def _craigslist_laundry(value: object | None) -> str | None:
    text = _to_str(value)
    if text is None:
        return None
    lowered = text.lower()
    if "in unit" in lowered:
        return "in_unit"
    if "in bldg" in lowered or "in building" in lowered:
        return "in_building"
    return text


class MockCraigslistAdapter(_FixtureAdapter):
    name = "mock_craigslist"

    def parse(self, content: str, meta: ListingMeta) -> NormalizedListingUpsert:
        data = _load_json_object(content)

        address: str | None = None
        unit: str | None = None
        location = _to_str(data.get("location"))
        if location:
            street, unit = split_unit(location)
            address = street or None

        return NormalizedListingUpsert(
            title=_to_str(data.get("post_title")) or UNTITLED,
            description=_to_str(data.get("body")),
            address=address,
            unit=unit,
            neighborhood=_to_str(data.get("area")),
            borough=normalize_borough(_to_str(data.get("boro"))),
            lat=_to_float(data.get("latitude")),
            lng=_to_float(data.get("longitude")),
            rent_gross=_to_int(data.get("price")),
            bedrooms=_to_float(data.get("br")),
            bathrooms=_to_float(data.get("ba")),
            broker_fee=_craigslist_fee(data.get("fee")),
            pet_policy=_craigslist_pets(data.get("pets")),
            laundry=_craigslist_laundry(data.get("laundry_situation")),
            elevator=_to_bool(data.get("has_elevator")),
            doorman=_to_bool(data.get("has_doorman")),
            images=_to_str_list(data.get("pic_urls")),
        )
