"""BeautifulSoup helpers for best-effort HTML field extraction.

Every helper returns None (or an empty list) instead of raising when a field
is missing or malformed.
"""

from __future__ import annotations

import math
import re
from typing import Final

from bs4 import BeautifulSoup
from bs4.element import Tag

_MONEY_PATTERN: Final = re.compile(r"\$\s*([\d,]+)")
_LEADING_NUMBER_PATTERN: Final = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)")
_LEASE_TERM_PATTERN: Final = re.compile(r"(\d+)\s*month", re.IGNORECASE)

BOROUGHS: Final = {
    "manhattan": "Manhattan",
    "brooklyn": "Brooklyn",
    "queens": "Queens",
    "bronx": "Bronx",
    "the bronx": "Bronx",
    "staten island": "Staten Island",
    "staten-island": "Staten Island",
    "mn": "Manhattan",
    "bk": "Brooklyn",
    "qn": "Queens",
    "bx": "Bronx",
    "si": "Staten Island",
}


def load_html(content: str) -> BeautifulSoup:
    return BeautifulSoup(content, "lxml")


def element_text(element: Tag) -> str:
    """Whitespace-collapsed text of an element."""

    return " ".join(element.get_text(" ").split())


def parse_text(soup: BeautifulSoup | Tag, selector: str) -> str | None:
    """Text of the first element matching a CSS selector, None if absent or empty."""

    element = soup.select_one(selector)
    if element is None:
        return None
    text = element_text(element)
    return text or None


def parse_all_text(soup: BeautifulSoup | Tag, selector: str) -> list[str]:
    texts: list[str] = []
    for element in soup.select(selector):
        text = element_text(element)
        if text:
            texts.append(text)
    return texts


def parse_attr(soup: BeautifulSoup | Tag, selector: str, attr: str) -> str | None:
    element = soup.select_one(selector)
    if element is None:
        return None
    value = element.get(attr)
    if not isinstance(value, str):
        return None
    return value.strip() or None


def parse_all_attr(soup: BeautifulSoup | Tag, selector: str, attr: str) -> list[str]:
    values: list[str] = []
    for element in soup.select(selector):
        value = element.get(attr)
        if isinstance(value, str) and value.strip():
            values.append(value.strip())
    return values


def parse_money(text: str | None) -> int | None:
    """"$3,500/mo" -> 3500."""

    if not text:
        return None
    match = _MONEY_PATTERN.search(text)
    if match is None:
        return None
    cleaned = match.group(1).replace(",", "")
    if not cleaned:
        return None
    return int(cleaned)


def parse_number(text: str | None) -> float | None:
    """Leading decimal number of a string ("1.5 baths" -> 1.5)."""

    if not text:
        return None
    match = _LEADING_NUMBER_PATTERN.match(text.strip())
    if match is None:
        return None
    number = float(match.group(0))
    return number if math.isfinite(number) else None


def parse_lease_term_months(text: str | None) -> int | None:
    if not text:
        return None
    match = _LEASE_TERM_PATTERN.search(text)
    return int(match.group(1)) if match else None


def title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def normalize_borough(raw: str | None) -> str | None:
    if raw is None or not raw.strip():
        return None
    return BOROUGHS.get(raw.strip().lower(), title_case(raw.strip()))
