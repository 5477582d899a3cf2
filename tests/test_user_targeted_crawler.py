from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crawlers.fixtures import MockCraigslistAdapter, MockStreetEasyAdapter
from src.db.repositories import fetch_existing_source_urls
from src.models.saved_search import SavedSearch
from src.models.scrape_job import ScrapeJob
from src.pipeline.user_targeted_crawler import (
    USER_TARGETED_MODE,
    run_user_targeted_crawler,
)


def _write_listings(root: Path, count: int, *, offset: int = 0) -> None:
    directory = root / "mock_streeteasy"
    directory.mkdir(parents=True, exist_ok=True)
    for index in range(offset, offset + count):
        payload = {"title": f"Listing {index}", "address": f"{index} Park Avenue"}
        (directory / f"se-{index:03d}.json").write_text(
            json.dumps(payload), encoding="utf-8"
        )


async def _add_search(
    session: AsyncSession, name: str, *, is_active: bool = True, **filters: object
) -> SavedSearch:
    search = SavedSearch(name=name, prompt="", is_active=is_active, **filters)
    session.add(search)
    await session.commit()
    return search


async def _jobs(session: AsyncSession) -> list[ScrapeJob]:
    rows = await session.execute(
        select(ScrapeJob)
        .order_by(ScrapeJob.id)
        .execution_options(populate_existing=True)
    )
    return list(rows.scalars().all())


class OfflineCraigslistAdapter(MockCraigslistAdapter):
    def discovery_available(self) -> bool:
        return False


@pytest.mark.anyio
async def test_only_active_searches_are_crawled_and_capped(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, 3)
    await _add_search(db_session, "brooklyn", borough="Brooklyn", max_rent=4000)
    await _add_search(db_session, "paused", is_active=False, borough="Queens")

    stats = await run_user_targeted_crawler(
        db_session, [MockStreetEasyAdapter(tmp_path)], max_per_search=2
    )

    assert stats.searches == 1
    assert stats.discovered == 3
    assert stats.new_urls == 3
    assert stats.ingested == 2
    assert stats.canonical_added == 2

    jobs = await _jobs(db_session)
    assert len(jobs) == 1
    assert jobs[0].mode == USER_TARGETED_MODE
    assert jobs[0].source == "mock_streeteasy"
    assert jobs[0].query == "NYC apartment for rent Brooklyn under $4000"
    assert jobs[0].target_count == 2
    assert jobs[0].ingested_count == 2


@pytest.mark.anyio
async def test_each_search_gets_its_own_budget(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, 3)
    await _add_search(db_session, "one", borough="Manhattan")
    await _add_search(db_session, "two", borough="Bronx")

    stats = await run_user_targeted_crawler(
        db_session, [MockStreetEasyAdapter(tmp_path)], max_per_search=2
    )

    assert stats.searches == 2
    assert stats.ingested == 3
    assert [job.ingested_count for job in await _jobs(db_session)] == [2, 1]


@pytest.mark.anyio
async def test_sources_without_discovery_credential_are_skipped(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, 1)
    await _add_search(db_session, "any")

    stats = await run_user_targeted_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path), OfflineCraigslistAdapter(tmp_path)],
    )

    assert stats.sources_skipped == 1
    assert stats.ingested == 1
    assert [job.source for job in await _jobs(db_session)] == ["mock_streeteasy"]


@pytest.mark.anyio
async def test_repeat_run_only_ingests_new_urls_and_reuses_job(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, 2)
    await _add_search(db_session, "repeat", min_beds=0)
    adapter = MockStreetEasyAdapter(tmp_path)

    first = await run_user_targeted_crawler(db_session, [adapter])
    _write_listings(tmp_path, 1, offset=2)
    second = await run_user_targeted_crawler(db_session, [adapter])

    assert first.ingested == 2
    assert second.discovered == 3
    assert second.new_urls == 1
    assert second.ingested == 1

    jobs = await _jobs(db_session)
    assert len(jobs) == 1
    assert jobs[0].discovered_count == 5
    assert jobs[0].ingested_count == 3


@pytest.mark.anyio
async def test_discovery_failure_is_recorded_on_job(
    db_session: AsyncSession, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    await _add_search(db_session, "broken")
    adapter = MockStreetEasyAdapter(tmp_path)

    async def broken_discovery(query: str, limit: int):
        raise RuntimeError("search backend down")

    monkeypatch.setattr(adapter, "discover_by_query", broken_discovery)

    stats = await run_user_targeted_crawler(db_session, [adapter])

    assert stats.errors == 1
    jobs = await _jobs(db_session)
    assert jobs[0].error_count == 1


@pytest.mark.anyio
async def test_cancel_event_stops_before_first_search(
    db_session: AsyncSession, tmp_path: Path
) -> None:
    _write_listings(tmp_path, 1)
    await _add_search(db_session, "cancelled")
    cancel_event = asyncio.Event()
    cancel_event.set()

    stats = await run_user_targeted_crawler(
        db_session, [MockStreetEasyAdapter(tmp_path)], cancel_event=cancel_event
    )

    assert stats.cancelled is True
    assert stats.searches == 0
    assert await _jobs(db_session) == []


@pytest.mark.anyio
async def test_store_failure_in_one_source_does_not_stop_other_sources(
    db_session: AsyncSession, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_listings(tmp_path, 2)
    craigslist_dir = tmp_path / "mock_craigslist"
    craigslist_dir.mkdir()
    (craigslist_dir / "cl-001.json").write_text(
        json.dumps({"post_title": "Loft", "location": "9 Bond Street"}),
        encoding="utf-8",
    )
    await _add_search(db_session, "everything")

    async def flaky_lookup(
        session: AsyncSession, source: str, source_urls: list[str]
    ) -> set[str]:
        if source == "mock_streeteasy":
            raise OperationalError("SELECT", {}, Exception("db down"))
        return await fetch_existing_source_urls(session, source, source_urls)

    monkeypatch.setattr(
        "src.pipeline.discovery.fetch_existing_source_urls", flaky_lookup
    )

    stats = await run_user_targeted_crawler(
        db_session,
        [MockStreetEasyAdapter(tmp_path), MockCraigslistAdapter(tmp_path)],
    )

    assert stats.errors == 1
    assert stats.ingested == 1
    jobs = await _jobs(db_session)
    assert [(job.source, job.error_count, job.ingested_count) for job in jobs] == [
        ("mock_streeteasy", 1, 0),
        ("mock_craigslist", 0, 1),
    ]
