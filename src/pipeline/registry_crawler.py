"""Registry filler: crawl sources until the canonical registry reaches a target size."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings
from src.crawlers.base import (
    QueryDiscoverableAdapter,
    SourceAdapter,
    listing_id_from_url,
)
from src.db.repositories import (
    count_canonical_units,
    get_or_create_scrape_job,
    increment_scrape_job_counters,
)
from src.pipeline.dedupe import ListingMatcher, dedupe_and_upsert_canonical
from src.pipeline.discovery import filter_new_urls, record_job_error
from src.pipeline.freshness import update_freshness
from src.pipeline.ingest import ingest_one

logger = logging.getLogger(__name__)

REGISTRY_MODE = "seed_registry"


@dataclass(slots=True)
class RegistryCrawlerOptions:
    sources: list[str] = field(default_factory=lambda: ["leasebreak", "streeteasy"])
    target_canonical_count: int = 200
    max_urls_per_run: int = 200
    batch_size: int = 30
    max_loops: int = 10
    discovery_limit: int = 500

    @classmethod
    def from_settings(cls, settings: Settings) -> "RegistryCrawlerOptions":
        return cls(
            sources=list(settings.registry_sources),
            target_canonical_count=settings.registry_target_canonical_count,
            max_urls_per_run=settings.registry_max_urls_per_run,
            batch_size=settings.registry_batch_size,
            max_loops=settings.registry_max_loops,
        )


@dataclass(slots=True)
class RegistryCrawlerStats:
    starting_count: int = 0
    ending_count: int = 0
    discovered: int = 0
    new_urls: int = 0
    ingested: int = 0
    canonical_added: int = 0
    errors: int = 0
    loops: int = 0
    target_reached: bool = False
    cancelled: bool = False
    job_id: int | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "starting_count": self.starting_count,
            "ending_count": self.ending_count,
            "discovered": self.discovered,
            "new_urls": self.new_urls,
            "ingested": self.ingested,
            "canonical_added": self.canonical_added,
            "errors": self.errors,
            "loops": self.loops,
            "target_reached": self.target_reached,
            "cancelled": self.cancelled,
            "job_id": self.job_id,
        }


@dataclass(slots=True)
class _BatchTotals:
    discovered: int = 0
    ingested: int = 0
    canonical_added: int = 0
    errors: int = 0


def _select_adapters(
    adapters: Sequence[SourceAdapter], sources: Sequence[str]
) -> list[QueryDiscoverableAdapter]:
    wanted = set(sources)
    selected: list[QueryDiscoverableAdapter] = []
    for adapter in adapters:
        if adapter.name not in wanted:
            continue
        if not isinstance(adapter, QueryDiscoverableAdapter):
            logger.warning(
                "[registry] %s has no query discovery, skipping", adapter.name
            )
            continue
        selected.append(adapter)
    return selected


async def run_registry_crawler(
    session: AsyncSession,
    adapters: Sequence[SourceAdapter],
    options: RegistryCrawlerOptions | None = None,
    *,
    matcher: ListingMatcher | None = None,
    cancel_event: asyncio.Event | None = None,
) -> RegistryCrawlerStats:
    """Discover, ingest and dedupe until the registry holds the target count.

    Each pass visits every selected source: discover by the source's query,
    keep URLs not yet ingested, take at most ``batch_size`` of them within the
    remaining URL budget, then ingest and dedupe one by one. The run stops as
    soon as ``starting + added`` reaches the target, when a pass finds no new
    URLs, when the URL budget or ``max_loops`` is exhausted, or when
    ``cancel_event`` is set. Freshness runs once before returning.
    """

    options = options or RegistryCrawlerOptions()
    matcher = matcher or ListingMatcher()
    stats = RegistryCrawlerStats()

    stats.starting_count = await count_canonical_units(session)
    target = options.target_canonical_count

    if stats.starting_count >= target:
        logger.info(
            "[registry] Already at target (%s >= %s)", stats.starting_count, target
        )
        stats.target_reached = True
        stats.ending_count = stats.starting_count
        await update_freshness(session)
        return stats

    selected = _select_adapters(adapters, options.sources)
    job = await get_or_create_scrape_job(
        session,
        source="+".join(options.sources),
        mode=REGISTRY_MODE,
        query=f"Fill registry to {target}",
        target_count=target,
    )
    await session.commit()
    stats.job_id = job.id

    def reached() -> bool:
        return stats.starting_count + stats.canonical_added >= target

    attempted = 0
    while stats.loops < options.max_loops and attempted < options.max_urls_per_run:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("[registry] Cancelled after %s loops", stats.loops)
            stats.cancelled = True
            break

        stats.loops += 1
        new_this_loop = 0

        for adapter in selected:
            if reached() or attempted >= options.max_urls_per_run:
                break
            if not adapter.discovery_available():
                logger.warning(
                    "[registry] %s: discovery credential missing, skipping",
                    adapter.name,
                )
                continue

            totals = _BatchTotals()
            try:
                discovered = await adapter.discover_by_query(
                    adapter.discovery_query, options.discovery_limit
                )
                new_listings = await filter_new_urls(session, adapter.name, discovered)
            except Exception as e:
                logger.warning("[registry] %s: discovery failed: %s", adapter.name, e)
                stats.errors += 1
                await record_job_error(session, job)
                continue

            totals.discovered = len(discovered)
            stats.discovered += len(discovered)
            new_this_loop += len(new_listings)
            stats.new_urls += len(new_listings)

            remaining = options.max_urls_per_run - attempted
            batch = new_listings[: min(options.batch_size, remaining)]
            logger.info(
                "[registry] %s: discovered=%s new=%s batch=%s",
                adapter.name,
                len(discovered),
                len(new_listings),
                len(batch),
            )

            for listing in batch:
                if reached():
                    break
                attempted += 1
                try:
                    normalized_listing_id = await ingest_one(
                        session,
                        adapter,
                        listing.url,
                        listing.source_listing_id or listing_id_from_url(listing.url),
                    )
                    if normalized_listing_id is None:
                        continue
                    totals.ingested += 1
                    result = await dedupe_and_upsert_canonical(
                        session, normalized_listing_id, matcher=matcher
                    )
                except Exception as e:
                    totals.errors += 1
                    logger.warning(
                        "[registry] %s: error processing %s: %s",
                        adapter.name,
                        listing.url,
                        e,
                    )
                    continue
                if result.created_new:
                    totals.canonical_added += 1
                    stats.canonical_added += 1

            stats.ingested += totals.ingested
            stats.errors += totals.errors
            await increment_scrape_job_counters(
                session,
                job,
                discovered=totals.discovered,
                ingested=totals.ingested,
                canonical_added=totals.canonical_added,
                errors=totals.errors,
                cursor={"loop": stats.loops, "source": adapter.name},
            )
            await session.commit()

        if reached():
            stats.target_reached = True
            break
        if new_this_loop == 0:
            logger.info("[registry] No new URLs discovered, sources saturated")
            break

    stats.ending_count = await count_canonical_units(session)
    if stats.ending_count >= target:
        stats.target_reached = True
        await increment_scrape_job_counters(session, job, status="paused")
        await session.commit()

    await update_freshness(session)

    logger.info(
        "[registry] Done: %s -> %s canonical units (ingested=%s errors=%s loops=%s)",
        stats.starting_count,
        stats.ending_count,
        stats.ingested,
        stats.errors,
        stats.loops,
    )
    return stats
