"""Crawl sources for the queries implied by active saved searches."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crawlers.base import (
    QueryDiscoverableAdapter,
    SourceAdapter,
    listing_id_from_url,
)
from src.db.repositories import (
    fetch_active_saved_searches,
    get_or_create_scrape_job,
    increment_scrape_job_counters,
)
from src.pipeline.dedupe import ListingMatcher, dedupe_and_upsert_canonical
from src.pipeline.discovery import (
    build_search_query,
    filter_new_urls,
    record_job_error,
)
from src.pipeline.freshness import update_freshness
from src.pipeline.ingest import ingest_one

logger = logging.getLogger(__name__)

USER_TARGETED_MODE = "user_targeted"


@dataclass(slots=True)
class UserTargetedStats:
    searches: int = 0
    sources_skipped: int = 0
    discovered: int = 0
    new_urls: int = 0
    ingested: int = 0
    canonical_added: int = 0
    errors: int = 0
    cancelled: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "searches": self.searches,
            "sources_skipped": self.sources_skipped,
            "discovered": self.discovered,
            "new_urls": self.new_urls,
            "ingested": self.ingested,
            "canonical_added": self.canonical_added,
            "errors": self.errors,
            "cancelled": self.cancelled,
        }


async def _crawl_search_source(
    session: AsyncSession,
    adapter: QueryDiscoverableAdapter,
    query: str,
    stats: UserTargetedStats,
    *,
    max_per_search: int,
    discovery_limit: int,
    matcher: ListingMatcher,
) -> None:
    try:
        job = await get_or_create_scrape_job(
            session,
            source=adapter.name,
            mode=USER_TARGETED_MODE,
            query=query,
            target_count=max_per_search,
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning("[user-targeted] %s: could not open job: %s", adapter.name, e)
        stats.errors += 1
        return

    try:
        discovered = await adapter.discover_by_query(query, discovery_limit)
        new_listings = await filter_new_urls(session, adapter.name, discovered)
    except Exception as e:
        logger.warning("[user-targeted] %s: discovery failed: %s", adapter.name, e)
        stats.errors += 1
        await record_job_error(session, job)
        return

    batch = new_listings[:max_per_search]
    stats.discovered += len(discovered)
    stats.new_urls += len(new_listings)
    logger.info(
        "[user-targeted] %s %r: discovered=%s new=%s batch=%s",
        adapter.name,
        query,
        len(discovered),
        len(new_listings),
        len(batch),
    )

    ingested = canonical_added = errors = 0
    for listing in batch:
        try:
            normalized_listing_id = await ingest_one(
                session,
                adapter,
                listing.url,
                listing.source_listing_id or listing_id_from_url(listing.url),
            )
            if normalized_listing_id is None:
                continue
            ingested += 1
            result = await dedupe_and_upsert_canonical(
                session, normalized_listing_id, matcher=matcher
            )
        except Exception as e:
            errors += 1
            logger.warning(
                "[user-targeted] %s: error processing %s: %s",
                adapter.name,
                listing.url,
                e,
            )
            continue
        if result.created_new:
            canonical_added += 1

    stats.ingested += ingested
    stats.canonical_added += canonical_added
    stats.errors += errors

    await increment_scrape_job_counters(
        session,
        job,
        discovered=len(discovered),
        ingested=ingested,
        canonical_added=canonical_added,
        errors=errors,
    )
    await session.commit()


async def run_user_targeted_crawler(
    session: AsyncSession,
    adapters: Sequence[SourceAdapter],
    *,
    max_per_search: int = 20,
    discovery_limit: int = 200,
    matcher: ListingMatcher | None = None,
    cancel_event: asyncio.Event | None = None,
) -> UserTargetedStats:
    """For each active saved search, crawl every query-capable source.

    At most ``max_per_search`` new URLs are ingested per search and source.
    Sources whose discovery credential is missing are skipped. Freshness runs
    once at the end.
    """

    matcher = matcher or ListingMatcher()
    stats = UserTargetedStats()

    searchable = [
        adapter for adapter in adapters if isinstance(adapter, QueryDiscoverableAdapter)
    ]
    searches = await fetch_active_saved_searches(session)
    logger.info(
        "[user-targeted] %s active saved searches, %s sources",
        len(searches),
        len(searchable),
    )

    for search in searches:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("[user-targeted] Cancelled after %s searches", stats.searches)
            stats.cancelled = True
            break

        stats.searches += 1
        query = build_search_query(search)

        for adapter in searchable:
            if not adapter.discovery_available():
                stats.sources_skipped += 1
                logger.info(
                    "[user-targeted] %s: discovery credential missing, skipping",
                    adapter.name,
                )
                continue
            await _crawl_search_source(
                session,
                adapter,
                query,
                stats,
                max_per_search=max_per_search,
                discovery_limit=discovery_limit,
                matcher=matcher,
            )

    await update_freshness(session)

    logger.info(
        "[user-targeted] Done: searches=%s ingested=%s canonical_added=%s errors=%s",
        stats.searches,
        stats.ingested,
        stats.canonical_added,
        stats.errors,
    )
    return stats
