"""Taskiq tasks for crawling, ingestion and freshness."""

import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any, cast

from src.config import get_settings
from src.crawlers.base import SourceAdapter
from src.crawlers.registry import AdapterDeps, build_adapters
from src.db.session import session_context
from src.pipeline.dedupe import ListingMatcher, dedupe_all
from src.pipeline.freshness import update_freshness
from src.pipeline.ingest import ingest_all
from src.pipeline.registry_crawler import RegistryCrawlerOptions, run_registry_crawler
from src.pipeline.user_targeted_crawler import run_user_targeted_crawler
from src.taskiq_app.broker import broker
from src.taskiq_app.dedup import (
    acquire_dedup_lock,
    build_dedup_key,
    execution_lock,
)

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def _adapters_for(names: Iterable[str]) -> AsyncIterator[list[SourceAdapter]]:
    """Build adapters sharing one rate limiter and close their clients afterwards."""

    deps = AdapterDeps.from_settings(settings)
    try:
        yield build_adapters(names, deps)
    finally:
        await deps.aclose()


def _skipped(task_name: str) -> dict[str, object]:
    logger.info("%s skipped due to dedup lock", task_name)
    return {"status": "skipped_duplicate_execution"}


@broker.task(
    task_name="crawl_registry",
    schedule=[{"cron": "0 */6 * * *"}],
    retry_on_error=True,
    max_retries=3,
)
async def crawl_registry(target: int | None = None) -> dict[str, object]:
    async with execution_lock("crawl_registry") as acquired:
        if not acquired:
            return _skipped("crawl_registry")

        options = RegistryCrawlerOptions.from_settings(settings)
        if target is not None:
            options.target_canonical_count = target

        async with _adapters_for(options.sources) as adapters:
            async with session_context() as session:
                stats = await run_registry_crawler(
                    session,
                    adapters,
                    options,
                    matcher=ListingMatcher.from_settings(settings),
                )

        return {"status": "ok", **stats.as_dict()}


@broker.task(
    task_name="crawl_user_targeted",
    schedule=[{"cron": "30 */3 * * *"}],
    retry_on_error=True,
    max_retries=3,
)
async def crawl_user_targeted() -> dict[str, object]:
    async with execution_lock("crawl_user_targeted") as acquired:
        if not acquired:
            return _skipped("crawl_user_targeted")

        async with _adapters_for(settings.registry_sources) as adapters:
            async with session_context() as session:
                stats = await run_user_targeted_crawler(
                    session,
                    adapters,
                    max_per_search=settings.user_targeted_max_per_search,
                    discovery_limit=settings.user_targeted_discovery_limit,
                    matcher=ListingMatcher.from_settings(settings),
                )

        return {"status": "ok", **stats.as_dict()}


@broker.task(
    task_name="ingest_sources",
    schedule=[{"cron": "15 */6 * * *"}],
    retry_on_error=True,
    max_retries=3,
)
async def ingest_sources(
    sources: list[str] | None = None, limit: int | None = None
) -> dict[str, object]:
    async with execution_lock("ingest_sources") as acquired:
        if not acquired:
            return _skipped("ingest_sources")

        names = sources if sources is not None else settings.registry_sources
        async with _adapters_for(names) as adapters:
            async with session_context() as session:
                results = await ingest_all(session, adapters, limit=limit)
                summary = await dedupe_all(
                    session, matcher=ListingMatcher.from_settings(settings)
                )
                freshness = await update_freshness(session)

        return {
            "status": "ok",
            "sources": {name: stats.as_dict() for name, stats in results.items()},
            "canonical_created": summary.created,
            "canonical_attached": summary.attached,
            "canonical_refreshed": summary.refreshed,
            "dedupe_errors": summary.errors,
            "stale": freshness.stale,
        }


@broker.task(
    task_name="refresh_freshness",
    schedule=[{"cron": "0 * * * *"}],
    retry_on_error=True,
    max_retries=3,
)
async def refresh_freshness() -> dict[str, object]:
    async with execution_lock("refresh_freshness") as acquired:
        if not acquired:
            return _skipped("refresh_freshness")

        async with session_context() as session:
            result = await update_freshness(session)

        return {
            "status": "ok",
            "active": result.active,
            "unknown": result.unknown,
            "stale": result.stale,
        }


async def _enqueue_once(
    task: Any, task_name: str, fingerprint: str, **kwargs: Any
) -> dict[str, object]:
    dedup_key = build_dedup_key(
        scope="enqueue", task_name=task_name, fingerprint=fingerprint
    )
    lock_acquired = await acquire_dedup_lock(
        dedup_key, settings.crawl_dedup_ttl_seconds
    )
    if not lock_acquired:
        return {"enqueued": False, "reason": "duplicate_enqueue"}

    kicked = await cast(Any, task).kiq(**kwargs)
    return {"enqueued": True, "task_id": kicked.task_id}


async def enqueue_crawl_registry(
    *, fingerprint: str = "manual", target: int | None = None
) -> dict[str, object]:
    """Enqueue the registry crawl once per dedup window."""

    return await _enqueue_once(
        crawl_registry, "crawl_registry", fingerprint, target=target
    )


async def enqueue_crawl_user_targeted(
    *, fingerprint: str = "manual"
) -> dict[str, object]:
    """Enqueue the saved-search crawl once per dedup window."""

    return await _enqueue_once(crawl_user_targeted, "crawl_user_targeted", fingerprint)
