from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, cast

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.crawlers.base import SourceAdapter
from src.crawlers.fixtures import MockCraigslistAdapter, MockStreetEasyAdapter
from src.domain.timestamps import utcnow
from src.models.canonical_unit import CanonicalUnit
from src.pipeline.registry_crawler import RegistryCrawlerOptions, RegistryCrawlerStats
from src.taskiq_app.tasks import (
    crawl_registry,
    crawl_user_targeted,
    enqueue_crawl_registry,
    enqueue_crawl_user_targeted,
    ingest_sources,
    refresh_freshness,
)


def _fake_adapters(adapters: list[SourceAdapter]):
    @asynccontextmanager
    async def fake_adapters_for(names: object) -> AsyncIterator[list[SourceAdapter]]:  # noqa: ARG001
        yield adapters

    return fake_adapters_for


def _fake_session_context(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
):
    @asynccontextmanager
    async def fake_session_context() -> AsyncIterator[Any]:
        if session_factory is None:
            yield object()
            return
        async with session_factory() as session:
            yield session

    return fake_session_context


@pytest.mark.anyio
async def test_crawl_registry_task_success(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, RegistryCrawlerOptions] = {}

    async def fake_run(session, adapters, options, **kwargs):  # noqa: ARG001
        seen["options"] = options
        return RegistryCrawlerStats(
            starting_count=10,
            ending_count=25,
            ingested=18,
            canonical_added=15,
            target_reached=True,
            loops=2,
            job_id=7,
        )

    monkeypatch.setattr("src.taskiq_app.tasks.run_registry_crawler", fake_run)
    monkeypatch.setattr("src.taskiq_app.tasks._adapters_for", _fake_adapters([]))
    monkeypatch.setattr(
        "src.taskiq_app.tasks.session_context", _fake_session_context()
    )

    task_fn = cast(Any, crawl_registry)
    task = await task_fn.kiq(target=25)
    result = await task.wait_result(timeout=30)

    assert not result.is_err
    assert result.return_value["status"] == "ok"
    assert result.return_value["canonical_added"] == 15
    assert result.return_value["target_reached"] is True
    assert result.return_value["job_id"] == 7
    assert seen["options"].target_canonical_count == 25


@pytest.mark.anyio
async def test_crawl_task_skipped_while_lock_is_held(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    called = {"run": 0}

    async def fake_lock(key: str, ttl_seconds: int) -> bool:  # noqa: ARG001
        return False

    async def fake_run(*args: object, **kwargs: object) -> None:  # noqa: ARG001
        called["run"] += 1

    monkeypatch.setattr("src.taskiq_app.dedup.acquire_dedup_lock", fake_lock)
    monkeypatch.setattr("src.taskiq_app.tasks.run_user_targeted_crawler", fake_run)

    task_fn = cast(Any, crawl_user_targeted)
    task = await task_fn.kiq()
    result = await task.wait_result(timeout=30)

    assert not result.is_err
    assert result.return_value == {"status": "skipped_duplicate_execution"}
    assert called["run"] == 0


@pytest.mark.anyio
async def test_crawl_registry_releases_lock_on_failure(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    released: list[str] = []

    async def fake_run(*args: object, **kwargs: object) -> None:  # noqa: ARG001
        raise RuntimeError("Simulated registry crawl failure")

    async def fake_lock(key: str, ttl_seconds: int) -> bool:  # noqa: ARG001
        return True

    async def fake_release(key: str) -> None:
        released.append(key)

    monkeypatch.setattr("src.taskiq_app.tasks.run_registry_crawler", fake_run)
    monkeypatch.setattr("src.taskiq_app.tasks._adapters_for", _fake_adapters([]))
    monkeypatch.setattr(
        "src.taskiq_app.tasks.session_context", _fake_session_context()
    )
    monkeypatch.setattr("src.taskiq_app.dedup.acquire_dedup_lock", fake_lock)
    monkeypatch.setattr("src.taskiq_app.dedup.release_dedup_lock", fake_release)

    task_fn = cast(Any, crawl_registry)
    task = await task_fn.kiq()
    result = await task.wait_result(timeout=30)

    assert result.is_err
    assert released == ["dedup:execution:crawl_registry:default"]


@pytest.mark.anyio
async def test_ingest_sources_task_merges_cross_source_duplicates(
    monkeypatch: pytest.MonkeyPatch,
    session_factory: async_sessionmaker[AsyncSession],
    fixtures_dir: Path,
) -> None:
    adapters: list[SourceAdapter] = [
        MockStreetEasyAdapter(fixtures_dir),
        MockCraigslistAdapter(fixtures_dir),
    ]
    monkeypatch.setattr("src.taskiq_app.tasks._adapters_for", _fake_adapters(adapters))
    monkeypatch.setattr(
        "src.taskiq_app.tasks.session_context", _fake_session_context(session_factory)
    )

    task_fn = cast(Any, ingest_sources)
    task = await task_fn.kiq()
    result = await task.wait_result(timeout=30)

    assert not result.is_err
    value = result.return_value
    assert value["status"] == "ok"
    assert value["sources"]["mock_streeteasy"]["ingested"] == 3
    assert value["sources"]["mock_craigslist"]["ingested"] == 3
    assert value["canonical_created"] == 4
    assert value["canonical_attached"] == 2
    assert value["dedupe_errors"] == 0


@pytest.mark.anyio
async def test_refresh_freshness_task_marks_stale_units(
    monkeypatch: pytest.MonkeyPatch,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        session.add_all(
            [
                CanonicalUnit(
                    canonical_address="1 fresh st",
                    active_state="active",
                    last_seen_at=utcnow() - timedelta(days=1),
                ),
                CanonicalUnit(
                    canonical_address="2 old st",
                    active_state="active",
                    last_seen_at=utcnow() - timedelta(days=30),
                ),
            ]
        )
        await session.commit()

    monkeypatch.setattr(
        "src.taskiq_app.tasks.session_context", _fake_session_context(session_factory)
    )

    task_fn = cast(Any, refresh_freshness)
    task = await task_fn.kiq()
    result = await task.wait_result(timeout=30)

    assert not result.is_err
    assert result.return_value == {
        "status": "ok",
        "active": 0,
        "unknown": 0,
        "stale": 1,
    }


@pytest.mark.anyio
async def test_enqueue_crawl_registry_dedup(monkeypatch: pytest.MonkeyPatch) -> None:
    kicked: list[dict[str, object]] = []

    class DummyTask:
        task_id: str = "registry-task-123"

    async def fake_kiq(*args: object, **kwargs: object):  # noqa: ARG001
        kicked.append(dict(kwargs))
        return DummyTask()

    task_fn = cast(Any, crawl_registry)
    monkeypatch.setattr(task_fn, "kiq", fake_kiq)

    first = await enqueue_crawl_registry(fingerprint="manual-test", target=50)
    second = await enqueue_crawl_registry(fingerprint="manual-test", target=50)

    assert first == {"enqueued": True, "task_id": "registry-task-123"}
    assert second == {"enqueued": False, "reason": "duplicate_enqueue"}
    assert kicked == [{"target": 50}]


@pytest.mark.anyio
async def test_enqueue_crawl_user_targeted_uses_separate_key(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    class DummyTask:
        task_id: str = "user-task-456"

    async def fake_kiq(*args: object, **kwargs: object):  # noqa: ARG001
        return DummyTask()

    monkeypatch.setattr(cast(Any, crawl_registry), "kiq", fake_kiq)
    monkeypatch.setattr(cast(Any, crawl_user_targeted), "kiq", fake_kiq)

    registry = await enqueue_crawl_registry(fingerprint="shared")
    user_targeted = await enqueue_crawl_user_targeted(fingerprint="shared")

    assert registry["enqueued"] is True
    assert user_targeted == {"enqueued": True, "task_id": "user-task-456"}
