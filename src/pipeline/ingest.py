"""Ingestion pipeline: fetch -> raw snapshot -> parse -> normalized upsert."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Final

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crawlers.base import (
    CrawlableAdapter,
    ListingMeta,
    PolicyViolationError,
    SourceAdapter,
)
from src.db.repositories import (
    StoreError,
    record_extracted_json,
    upsert_normalized_listing,
    upsert_raw_listing,
)
from src.domain.timestamps import utcnow
from src.pipeline.dedupe import ListingMatcher, dedupe_and_upsert_canonical

logger = logging.getLogger(__name__)

PARSE_VERSION: Final = "1.0.0"


@dataclass(slots=True)
class IngestStats:
    """Per-adapter ingestion summary."""

    source: str
    discovered: int = 0
    ingested: int = 0
    skipped: int = 0
    errors: int = 0
    canonical_created: int = 0
    canonical_attached: int = 0
    canonical_refreshed: int = 0
    normalized_listing_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "source": self.source,
            "discovered": self.discovered,
            "ingested": self.ingested,
            "skipped": self.skipped,
            "errors": self.errors,
            "canonical_created": self.canonical_created,
            "canonical_attached": self.canonical_attached,
            "canonical_refreshed": self.canonical_refreshed,
        }


def _is_success(http_status: int) -> bool:
    return 200 <= http_status < 300


async def ingest_content(
    session: AsyncSession,
    adapter: SourceAdapter,
    url: str,
    content: str,
    *,
    http_status: int = 200,
    source_listing_id: str | None = None,
) -> int | None:
    """Store and normalize content obtained outside the adapter's own fetch.

    This is the only ingestion path for parse-only sources. Non-2xx or empty
    content is recorded on the raw listing but not normalized; None is
    returned in that case. The raw and normalized writes commit together.
    """

    now = utcnow()
    normalizable = _is_success(http_status) and bool(content.strip())

    try:
        raw_listing_id = await upsert_raw_listing(
            session,
            source=adapter.name,
            source_url=url,
            source_listing_id=source_listing_id,
            http_status=http_status,
            raw_content=content,
            fetched_at=now,
            parse_version=PARSE_VERSION,
        )

        if not normalizable:
            await session.commit()
            logger.warning(
                "[ingest] %s: %s returned status=%s, not normalized",
                adapter.name,
                url,
                http_status,
            )
            return None

        payload = adapter.parse(
            content, ListingMeta(url=url, source_listing_id=source_listing_id)
        )
        await record_extracted_json(session, raw_listing_id, payload.to_snapshot())

        normalized_listing_id = await upsert_normalized_listing(
            session,
            raw_listing_id=raw_listing_id,
            source=adapter.name,
            source_url=url,
            payload=payload,
            seen_at=now,
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise StoreError(f"Failed to store {adapter.name} listing url={url}") from e
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "[ingest] %s: upserted normalized listing %s %r",
        adapter.name,
        normalized_listing_id,
        payload.title,
    )
    return normalized_listing_id


async def ingest_one(
    session: AsyncSession,
    adapter: SourceAdapter,
    url: str,
    source_listing_id: str | None = None,
) -> int | None:
    """Fetch one URL through its adapter and ingest the result."""

    if not isinstance(adapter, CrawlableAdapter):
        raise PolicyViolationError(
            f"{adapter.name} does not allow automated fetching; "
            "submit captured page content instead"
        )

    fetched = await adapter.fetch(url)
    logger.info("[ingest] %s: fetched %s (%s)", adapter.name, url, fetched.http_status)

    return await ingest_content(
        session,
        adapter,
        url,
        fetched.content,
        http_status=fetched.http_status,
        source_listing_id=source_listing_id,
    )


async def ingest_adapter(
    session: AsyncSession,
    adapter: SourceAdapter,
    *,
    limit: int | None = None,
    dedupe: bool = False,
    matcher: ListingMatcher | None = None,
) -> IngestStats:
    """Discover once, then ingest each candidate with per-URL failure isolation.

    With ``dedupe`` set each ingested listing is matched immediately.
    """

    stats = IngestStats(source=adapter.name)

    if not isinstance(adapter, CrawlableAdapter):
        logger.info("[ingest] %s: parse-only source, skipping discovery", adapter.name)
        return stats

    discovered = await adapter.discover()
    if limit is not None:
        discovered = discovered[: max(0, limit)]
    stats.discovered = len(discovered)
    logger.info("[ingest] %s: discovered %s listings", adapter.name, len(discovered))

    for listing in discovered:
        try:
            normalized_listing_id = await ingest_one(
                session, adapter, listing.url, listing.source_listing_id
            )
        except Exception as e:
            stats.errors += 1
            logger.warning(
                "[ingest] %s: error processing %s: %s", adapter.name, listing.url, e
            )
            continue

        if normalized_listing_id is None:
            stats.skipped += 1
            continue

        stats.ingested += 1
        stats.normalized_listing_ids.append(normalized_listing_id)

        if not dedupe:
            continue
        try:
            result = await dedupe_and_upsert_canonical(
                session, normalized_listing_id, matcher=matcher
            )
        except Exception as e:
            stats.errors += 1
            logger.warning(
                "[ingest] %s: dedupe failed for listing %s: %s",
                adapter.name,
                normalized_listing_id,
                e,
            )
            continue
        if result.created_new:
            stats.canonical_created += 1
        elif result.refreshed:
            stats.canonical_refreshed += 1
        else:
            stats.canonical_attached += 1

    logger.info(
        "[ingest] %s: ingested=%s skipped=%s errors=%s",
        adapter.name,
        stats.ingested,
        stats.skipped,
        stats.errors,
    )
    return stats


async def ingest_all(
    session: AsyncSession,
    adapters: Sequence[SourceAdapter],
    *,
    limit: int | None = None,
    dedupe: bool = False,
    matcher: ListingMatcher | None = None,
) -> dict[str, IngestStats]:
    """Run ingest_adapter for each adapter in turn.

    A discovery failure in one adapter is logged and does not stop the rest.
    """

    results: dict[str, IngestStats] = {}
    for adapter in adapters:
        logger.info("[ingest] Starting adapter: %s", adapter.name)
        try:
            results[adapter.name] = await ingest_adapter(
                session, adapter, limit=limit, dedupe=dedupe, matcher=matcher
            )
        except Exception as e:
            logger.warning("[ingest] %s: discovery failed: %s", adapter.name, e)
            results[adapter.name] = IngestStats(source=adapter.name, errors=1)
    return results
