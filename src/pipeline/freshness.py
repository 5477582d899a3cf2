"""Freshness engine: derive canonical unit availability from last_seen_at."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.repositories import StoreError, update_active_state
from src.domain.timestamps import as_utc, utcnow

logger = logging.getLogger(__name__)

ACTIVE_WINDOW: Final = timedelta(days=7)
UNKNOWN_WINDOW: Final = timedelta(days=14)


@dataclass(slots=True)
class FreshnessResult:
    """Rows moved into each state by one pass."""

    active: int = 0
    unknown: int = 0
    stale: int = 0

    @property
    def total(self) -> int:
        return self.active + self.unknown + self.stale


def classify_active_state(last_seen_at: datetime, now: datetime) -> str:
    """active within 7 days, unknown within 14 days, stale beyond."""

    age = as_utc(now) - as_utc(last_seen_at)
    if age <= ACTIVE_WINDOW:
        return "active"
    if age <= UNKNOWN_WINDOW:
        return "unknown"
    return "stale"


async def update_freshness(
    session: AsyncSession, *, now: datetime | None = None
) -> FreshnessResult:
    """Reclassify every canonical unit with three guarded bulk updates.

    Each update skips rows already in its target state, so a repeat pass
    with the same clock changes nothing.
    """

    now = as_utc(now) if now is not None else utcnow()
    active_cutoff = now - ACTIVE_WINDOW
    stale_cutoff = now - UNKNOWN_WINDOW

    try:
        result = FreshnessResult(
            active=await update_active_state(
                session, state="active", seen_since=active_cutoff
            ),
            unknown=await update_active_state(
                session,
                state="unknown",
                seen_since=stale_cutoff,
                seen_before=active_cutoff,
            ),
            stale=await update_active_state(
                session, state="stale", seen_before=stale_cutoff
            ),
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise StoreError("Freshness pass failed") from e

    logger.info(
        "[freshness] active=%s unknown=%s stale=%s",
        result.active,
        result.unknown,
        result.stale,
    )
    return result
