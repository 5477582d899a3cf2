"""Address normalization and geo-bucketing utilities for deduplication."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Final

GEO_BUCKET_PRECISION: Final = Decimal("0.001")
GEO_BUCKET_WINDOW: Final = 0.001

# Contracted in one direction only so both spellings land on the same key.
_ABBREVIATIONS: Final = (
    ("street", "st"),
    ("avenue", "ave"),
    ("boulevard", "blvd"),
    ("drive", "dr"),
    ("road", "rd"),
    ("place", "pl"),
    ("lane", "ln"),
    ("parkway", "pkwy"),
    ("east", "e"),
    ("west", "w"),
    ("north", "n"),
    ("south", "s"),
)
_ABBREVIATION_PATTERNS: Final = tuple(
    (re.compile(rf"\b{word}\b"), short) for word, short in _ABBREVIATIONS
)

_STREET_TYPES: Final = "|".join(
    word for full, short in _ABBREVIATIONS if len(short) > 1 for word in (full, short)
)
# A unit label is one token, optionally followed by a single-character part
# ("Apt 4 B"); a street-type word after "unit" is part of the street name.
_UNIT_SUFFIX_PATTERN: Final = re.compile(
    r"[,\s]*(?:\b(?:apt|apartment|unit|suite|ste)\b\.?|#)\s*"
    rf"(?!(?:{_STREET_TYPES})\b)([\w-]+(?:\s\w)?)\s*$",
    re.IGNORECASE,
)
_WHITESPACE_PATTERN: Final = re.compile(r"\s+")
_TRAILING_PUNCTUATION_PATTERN: Final = re.compile(r"[.,;]+$")


def split_unit(location: str) -> tuple[str, str | None]:
    """Split a trailing unit designation off a street address.

    "245 E 7th St Apt 3A" -> ("245 E 7th St", "3A")
    """

    match = _UNIT_SUFFIX_PATTERN.search(location)
    if match is None or match.start() == 0:
        return location.strip(), None
    unit = "".join(match.group(1).split())
    return location[: match.start()].strip(), unit


def normalize_address(raw: str | None) -> str | None:
    """Normalize a street address into a comparison key.

    Lowercases, strips the unit suffix (units are compared separately),
    contracts street-type and directional words, drops periods, collapses
    whitespace and strips trailing punctuation. Returns None for blank input.
    """

    if raw is None:
        return None

    address = raw.lower().strip()
    if not address:
        return None

    address, _ = split_unit(address)
    address = address.replace(".", "")
    for pattern, short in _ABBREVIATION_PATTERNS:
        address = pattern.sub(short, address)

    address = _WHITESPACE_PATTERN.sub(" ", address).strip()
    address = _TRAILING_PUNCTUATION_PATTERN.sub("", address).strip()
    return address or None


def _round_coordinate(value: float) -> Decimal | None:
    try:
        return Decimal(str(value)).quantize(GEO_BUCKET_PRECISION, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None


def geo_bucket(lat: float | None, lng: float | None) -> str | None:
    """Round lat/lng to 3 decimals (~100m cells). None if either is missing."""

    if lat is None or lng is None:
        return None
    bucket_lat = _round_coordinate(lat)
    bucket_lng = _round_coordinate(lng)
    if bucket_lat is None or bucket_lng is None:
        return None
    return f"{bucket_lat},{bucket_lng}"


def geo_bucket_bounds(
    lat: float | None, lng: float | None
) -> tuple[float, float, float, float] | None:
    """Bounding box (min_lat, max_lat, min_lng, max_lng) around a geo bucket.

    The box spans one bucket width either side of the bucket centre so that
    near-miss coordinates in a neighbouring cell are still candidates.
    """

    if lat is None or lng is None:
        return None
    bucket_lat = _round_coordinate(lat)
    bucket_lng = _round_coordinate(lng)
    if bucket_lat is None or bucket_lng is None:
        return None
    return (
        float(bucket_lat) - GEO_BUCKET_WINDOW,
        float(bucket_lat) + GEO_BUCKET_WINDOW,
        float(bucket_lng) - GEO_BUCKET_WINDOW,
        float(bucket_lng) + GEO_BUCKET_WINDOW,
    )
