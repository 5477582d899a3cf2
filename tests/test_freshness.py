from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.canonical_unit import CanonicalUnit
from src.pipeline.freshness import classify_active_state, update_freshness

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@pytest.mark.anyio
async def test_classify_window_boundaries() -> None:
    assert classify_active_state(NOW, NOW) == "active"
    assert classify_active_state(NOW - timedelta(days=7), NOW) == "active"
    assert classify_active_state(NOW - timedelta(days=7, seconds=1), NOW) == "unknown"
    assert classify_active_state(NOW - timedelta(days=14), NOW) == "unknown"
    assert classify_active_state(NOW - timedelta(days=14, seconds=1), NOW) == "stale"


@pytest.mark.anyio
async def test_classify_accepts_naive_timestamps_as_utc() -> None:
    naive = (NOW - timedelta(days=20)).replace(tzinfo=None)

    assert classify_active_state(naive, NOW) == "stale"


async def _add_unit(
    session: AsyncSession, age: timedelta, state: str = "active"
) -> CanonicalUnit:
    unit = CanonicalUnit(
        canonical_address=f"{int(age.total_seconds())} test st",
        active_state=state,
        last_seen_at=NOW - age,
    )
    session.add(unit)
    await session.commit()
    return unit


async def _states(session: AsyncSession) -> list[str]:
    rows = await session.execute(
        select(CanonicalUnit.active_state).order_by(CanonicalUnit.id)
    )
    return list(rows.scalars().all())


@pytest.mark.anyio
async def test_update_freshness_moves_units_between_states(
    db_session: AsyncSession,
) -> None:
    await _add_unit(db_session, timedelta(days=1))
    await _add_unit(db_session, timedelta(days=10))
    await _add_unit(db_session, timedelta(days=20))

    result = await update_freshness(db_session, now=NOW)

    assert (result.active, result.unknown, result.stale) == (0, 1, 1)
    assert result.total == 2
    assert await _states(db_session) == ["active", "unknown", "stale"]


@pytest.mark.anyio
async def test_repeat_pass_with_same_clock_changes_nothing(
    db_session: AsyncSession,
) -> None:
    await _add_unit(db_session, timedelta(days=3), state="unknown")
    await _add_unit(db_session, timedelta(days=30))

    first = await update_freshness(db_session, now=NOW)
    second = await update_freshness(db_session, now=NOW)

    assert first.total == 2
    assert second.total == 0
    assert await _states(db_session) == ["active", "stale"]


@pytest.mark.anyio
async def test_stale_unit_seen_again_becomes_active(db_session: AsyncSession) -> None:
    await _add_unit(db_session, timedelta(hours=2), state="stale")

    result = await update_freshness(db_session, now=NOW)

    assert result.active == 1
    assert await _states(db_session) == ["active"]


@pytest.mark.anyio
async def test_empty_registry_is_a_no_op(db_session: AsyncSession) -> None:
    result = await update_freshness(db_session, now=NOW)

    assert result.total == 0
