from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crawlers.fixtures import MockCraigslistAdapter, MockStreetEasyAdapter
from src.db.repositories import fetch_existing_source_urls
from src.domain.timestamps import utcnow
from src.models.canonical_unit import CanonicalUnit
from src.models.scrape_job import ScrapeJob
from src.pipeline.registry_crawler import (
    REGISTRY_MODE,
    RegistryCrawlerOptions,
    run_registry_crawler,
)


def _write_listings(root: Path, source: str, count: int, *, offset: int = 0) -> None:
    directory = root / source
    directory.mkdir(parents=True, exist_ok=True)
    for index in range(offset, offset + count):
        payload = {
            "title": f"Listing {index}",
            "address": f"{100 + index} Test Street",
            "rent": 2000 + index,
        }
        (directory / f"{source}-{index:03d}.json").write_text(
            json.dumps(payload), encoding="utf-8"
        )


def _options(**overrides: object) -> RegistryCrawlerOptions:
    values: dict[str, object] = {
        "sources": ["mock_streeteasy"],
        "target_canonical_count": 100,
        "max_urls_per_run": 100,
        "batch_size": 30,
        "max_loops": 10,
    }
    values.update(overrides)
    return RegistryCrawlerOptions(**values)  # type: ignore[arg-type]


async def _job(session: AsyncSession, job_id: int | None) -> ScrapeJob:
    assert job_id is not None
    job = await session.get(ScrapeJob, job_id, populate_existing=True)
    assert job is not None
    return job


class OfflineCraigslistAdapter(MockCraigslistAdapter):
    def discovery_available(self) -> bool:
        return False


@pytest.mark.anyio
async def test_stops_as_soon_as_target_is_reached(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 5)

    stats = await run_registry_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path)],
        _options(target_canonical_count=3),
    )

    assert stats.target_reached is True
    assert stats.canonical_added == 3
    assert stats.ingested == 3
    assert stats.ending_count == 3
    assert stats.loops == 1

    job = await _job(db_session, stats.job_id)
    assert job.mode == REGISTRY_MODE
    assert job.status == "paused"
    assert job.canonical_added_count == 3
    assert job.discovered_count == 5
    assert job.cursor_json == {"loop": 1, "source": "mock_streeteasy"}


@pytest.mark.anyio
async def test_stops_when_sources_are_saturated(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 2)

    stats = await run_registry_crawler(
        db_session, [MockStreetEasyAdapter(tmp_path)], _options()
    )

    assert stats.loops == 2
    assert stats.canonical_added == 2
    assert stats.new_urls == 2
    assert stats.target_reached is False
    job = await _job(db_session, stats.job_id)
    assert job.status == "active"


@pytest.mark.anyio
async def test_already_at_target_skips_crawling(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 2)
    db_session.add(
        CanonicalUnit(canonical_address="1 seed st", last_seen_at=utcnow())
    )
    await db_session.commit()

    stats = await run_registry_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path)],
        _options(target_canonical_count=1),
    )

    assert stats.target_reached is True
    assert stats.job_id is None
    assert stats.loops == 0
    assert stats.ingested == 0


@pytest.mark.anyio
async def test_url_budget_caps_attempts(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 5)

    stats = await run_registry_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path)],
        _options(max_urls_per_run=2),
    )

    assert stats.ingested == 2
    assert stats.loops == 1
    assert stats.target_reached is False


@pytest.mark.anyio
async def test_batch_size_spreads_work_over_loops(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 5)

    stats = await run_registry_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path)],
        _options(batch_size=2, max_loops=2),
    )

    assert stats.loops == 2
    assert stats.ingested == 4


@pytest.mark.anyio
async def test_cancel_event_stops_before_next_loop(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 3)
    cancel_event = asyncio.Event()
    cancel_event.set()

    stats = await run_registry_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path)],
        _options(),
        cancel_event=cancel_event,
    )

    assert stats.cancelled is True
    assert stats.loops == 0
    assert stats.ingested == 0


@pytest.mark.anyio
async def test_sources_without_discovery_credential_are_skipped(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 1)
    _write_listings(tmp_path, "mock_craigslist", 2)

    stats = await run_registry_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path), OfflineCraigslistAdapter(tmp_path)],
        _options(sources=["mock_streeteasy", "mock_craigslist"]),
    )

    assert stats.ingested == 1
    assert stats.errors == 0


@pytest.mark.anyio
async def test_discovery_failure_is_counted_and_crawl_continues(
    db_session: AsyncSession, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 2)
    failing = MockCraigslistAdapter(tmp_path)

    async def broken_discovery(query: str, limit: int):
        raise RuntimeError("search backend down")

    monkeypatch.setattr(failing, "discover_by_query", broken_discovery)

    stats = await run_registry_crawler(
        db_session,
        [failing, MockStreetEasyAdapter(tmp_path)],
        _options(sources=["mock_craigslist", "mock_streeteasy"], max_loops=1),
    )

    assert stats.errors == 1
    assert stats.ingested == 2
    job = await _job(db_session, stats.job_id)
    assert job.error_count == 1


@pytest.mark.anyio
async def test_sources_not_selected_are_ignored(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 2)
    _write_listings(tmp_path, "mock_craigslist", 2, offset=10)

    stats = await run_registry_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path), MockCraigslistAdapter(tmp_path)],
        _options(max_loops=1),
    )

    assert stats.ingested == 2
    assert stats.discovered == 2


@pytest.mark.anyio
async def test_active_job_is_reused_across_runs(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 2)
    adapter = MockStreetEasyAdapter(tmp_path)

    first = await run_registry_crawler(db_session, [adapter], _options())
    _write_listings(tmp_path, "mock_streeteasy", 1, offset=2)
    second = await run_registry_crawler(db_session, [adapter], _options())

    assert second.job_id == first.job_id
    assert second.starting_count == 2
    assert second.canonical_added == 1
    job = await _job(db_session, second.job_id)
    assert job.canonical_added_count == 3
    assert job.ingested_count == 3


@pytest.mark.anyio
async def test_store_failure_in_one_source_does_not_stop_the_run(
    db_session: AsyncSession, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_listings(tmp_path, "mock_streeteasy", 2)
    _write_listings(tmp_path, "mock_craigslist", 2, offset=10)
    db_session.add(
        CanonicalUnit(
            canonical_address="1 old st",
            active_state="active",
            last_seen_at=utcnow() - timedelta(days=30),
        )
    )
    await db_session.commit()

    async def flaky_lookup(
        session: AsyncSession, source: str, source_urls: list[str]
    ) -> set[str]:
        if source == "mock_streeteasy":
            raise OperationalError("SELECT", {}, Exception("db down"))
        return await fetch_existing_source_urls(session, source, source_urls)

    monkeypatch.setattr(
        "src.pipeline.discovery.fetch_existing_source_urls", flaky_lookup
    )

    stats = await run_registry_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path), MockCraigslistAdapter(tmp_path)],
        _options(sources=["mock_streeteasy", "mock_craigslist"], max_loops=1),
    )

    assert stats.errors == 1
    assert stats.ingested == 2
    assert stats.canonical_added == 2
    job = await _job(db_session, stats.job_id)
    assert job.error_count == 1
    assert job.ingested_count == 2
    stale = (
        await db_session.execute(
            select(CanonicalUnit.active_state)
            .where(CanonicalUnit.canonical_address == "1 old st")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert stale == "stale"
