"""Discovery helpers shared by the crawl orchestrators."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Final

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crawlers.base import DiscoveredListing
from src.db.repositories import (
    StoreError,
    fetch_existing_source_urls,
    increment_scrape_job_counters,
)
from src.models.saved_search import SavedSearch
from src.models.scrape_job import ScrapeJob

logger = logging.getLogger(__name__)

BASE_SEARCH_QUERY: Final = "NYC apartment for rent"
MAX_PROMPT_LENGTH: Final = 200
_LOOKUP_CHUNK_SIZE: Final = 500


async def filter_new_urls(
    session: AsyncSession, source: str, listings: Sequence[DiscoveredListing]
) -> list[DiscoveredListing]:
    """Drop URLs already stored as normalized listings for the source.

    Duplicates within ``listings`` are collapsed; order is preserved.
    """

    unique: dict[str, DiscoveredListing] = {}
    for listing in listings:
        unique.setdefault(listing.url, listing)

    urls = list(unique)
    existing: set[str] = set()
    try:
        for start in range(0, len(urls), _LOOKUP_CHUNK_SIZE):
            existing |= await fetch_existing_source_urls(
                session, source, urls[start : start + _LOOKUP_CHUNK_SIZE]
            )
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to look up stored URLs for {source}") from e

    return [listing for url, listing in unique.items() if url not in existing]


async def record_job_error(session: AsyncSession, job: ScrapeJob) -> None:
    """Roll back the failed work and count one error on the crawl job."""

    job_id = job.id
    await session.rollback()
    try:
        await session.refresh(job)
        await increment_scrape_job_counters(session, job, errors=1)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning("[crawl] Could not record error on job %s: %s", job_id, e)


def _format_beds(min_beds: float) -> str:
    if min_beds == 0:
        return "studio"
    value = int(min_beds) if float(min_beds).is_integer() else min_beds
    return f"{value} bedroom"


def build_search_query(search: SavedSearch) -> str:
    """Turn a saved search's filters and prompt into a discovery query."""

    parts = [BASE_SEARCH_QUERY]
    if search.borough:
        parts.append(search.borough)
    if search.neighborhood:
        parts.append(search.neighborhood)
    if search.max_rent:
        parts.append(f"under ${search.max_rent}")
    if search.min_beds is not None:
        parts.append(_format_beds(search.min_beds))
    if search.no_fee_preferred:
        parts.append("no fee")

    prompt = (search.prompt or "").strip()
    if prompt and len(prompt) < MAX_PROMPT_LENGTH:
        parts.append(prompt)

    return " ".join(parts)
