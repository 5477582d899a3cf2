"""Matching engine: attach normalized listings to canonical units."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings
from src.db.repositories import (
    ChangeLogCreate,
    StoreError,
    append_change_logs,
    create_canonical_unit_with_posting,
    fetch_canonical_candidates,
    fetch_canonical_unit,
    fetch_normalized_listing,
    fetch_posting_for_listing,
    fetch_refreshable_normalized_listing_ids,
    fetch_unposted_normalized_listing_ids,
    upsert_unit_posting,
)
from src.domain.normalize import geo_bucket, geo_bucket_bounds, normalize_address
from src.domain.timestamps import as_utc
from src.models.canonical_unit import CanonicalUnit
from src.models.normalized_listing import NormalizedListing
from src.pipeline.changes import detect_changes

logger = logging.getLogger(__name__)

SELF_MATCH_SCORE = 100
ROOM_TOLERANCE = 0.5


@dataclass(frozen=True, slots=True)
class MatchWeights:
    """Scoring weights and the acceptance threshold."""

    address: int = 40
    unit: int = 30
    geo: int = 20
    rooms: int = 10
    threshold: int = 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "MatchWeights":
        return cls(
            address=settings.match_weight_address,
            unit=settings.match_weight_unit,
            geo=settings.match_weight_geo,
            rooms=settings.match_weight_rooms,
            threshold=settings.match_threshold,
        )


@dataclass(slots=True)
class DedupeResult:
    created_new: bool
    canonical_unit_id: int
    score: float
    refreshed: bool = False


@dataclass(slots=True)
class DedupeSummary:
    processed: int = 0
    created: int = 0
    attached: int = 0
    refreshed: int = 0
    errors: int = 0


def _rooms_match(
    unit_beds: float | None,
    unit_baths: float | None,
    listing_beds: float | None,
    listing_baths: float | None,
) -> bool:
    if unit_beds is None or listing_beds is None:
        return False
    if abs(unit_beds - listing_beds) > ROOM_TOLERANCE:
        return False
    if unit_baths is None or listing_baths is None:
        return True
    return abs(unit_baths - listing_baths) <= ROOM_TOLERANCE


def _same_unit_label(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return left.strip().casefold() == right.strip().casefold()


def score_candidate(
    candidate: CanonicalUnit,
    listing: NormalizedListing,
    *,
    address_key: str | None,
    bucket: str | None,
    weights: MatchWeights,
) -> int:
    """Score how likely a listing describes the candidate unit."""

    score = 0
    if address_key is not None and candidate.canonical_address == address_key:
        score += weights.address
    if _same_unit_label(candidate.canonical_unit, listing.unit):
        score += weights.unit
    if bucket is not None and geo_bucket(candidate.lat, candidate.lng) == bucket:
        score += weights.geo
    if _rooms_match(
        candidate.bedrooms, candidate.bathrooms, listing.bedrooms, listing.bathrooms
    ):
        score += weights.rooms
    return score


class ListingMatcher:
    """Holds scoring weights and serialises matching per address key and geo bucket.

    The candidate-score-accept sequence for a listing runs while holding the
    locks for its address key and geo bucket, acquired in sorted key order.
    """

    def __init__(self, weights: MatchWeights | None = None) -> None:
        self.weights = weights or MatchWeights()
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ListingMatcher":
        return cls(MatchWeights.from_settings(settings))

    @asynccontextmanager
    async def critical_section(
        self, address_key: str | None, bucket: str | None
    ) -> AsyncIterator[None]:
        keys = sorted(
            key
            for key in (
                f"address:{address_key}" if address_key else None,
                f"geo:{bucket}" if bucket else None,
            )
            if key is not None
        )
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(
                    self._locks.setdefault(key, asyncio.Lock())
                )
            yield


def _merge_listing(
    unit: CanonicalUnit, listing: NormalizedListing, address_key: str | None
) -> list[ChangeLogCreate]:
    """Fold a listing into its unit and return the changes it caused.

    Prices, fee and last_seen only move forward: a listing observed before the
    unit's last_seen neither overwrites them nor logs a change. Missing
    descriptive fields are backfilled either way.
    """

    listing_seen = as_utc(listing.last_seen_at)
    unit_seen = as_utc(unit.last_seen_at)

    changes: list[ChangeLogCreate] = []
    if listing_seen >= unit_seen:
        changes = detect_changes(unit, listing)
        if listing.rent_gross is not None:
            unit.best_rent_gross = listing.rent_gross
        if listing.rent_net_effective is not None:
            unit.best_rent_net_effective = listing.rent_net_effective
        if listing.broker_fee is not None:
            unit.broker_fee = listing.broker_fee
        unit.last_seen_at = listing_seen

    if unit.canonical_address is None and address_key is not None:
        unit.canonical_address = address_key
    if unit.canonical_unit is None and listing.unit:
        unit.canonical_unit = listing.unit
    if unit.neighborhood is None:
        unit.neighborhood = listing.neighborhood
    if unit.borough is None:
        unit.borough = listing.borough
    if unit.lat is None or unit.lng is None:
        if listing.lat is not None and listing.lng is not None:
            unit.lat = listing.lat
            unit.lng = listing.lng
    if unit.bedrooms is None:
        unit.bedrooms = listing.bedrooms
    if unit.bathrooms is None:
        unit.bathrooms = listing.bathrooms
    return changes


async def _pick_candidate(
    session: AsyncSession,
    listing: NormalizedListing,
    *,
    address_key: str | None,
    bucket: str | None,
    weights: MatchWeights,
) -> tuple[CanonicalUnit | None, int]:
    candidates = await fetch_canonical_candidates(
        session,
        address_key=address_key,
        bounds=geo_bucket_bounds(listing.lat, listing.lng),
    )

    best: CanonicalUnit | None = None
    best_score = -1
    for candidate in candidates:
        score = score_candidate(
            candidate,
            listing,
            address_key=address_key,
            bucket=bucket,
            weights=weights,
        )
        if score > best_score:
            best = candidate
            best_score = score
    return best, best_score


async def dedupe_and_upsert_canonical(
    session: AsyncSession,
    normalized_listing_id: int,
    *,
    matcher: ListingMatcher | None = None,
) -> DedupeResult:
    """Attach a normalized listing to its best canonical unit, or create one.

    A listing that already has a posting stays with that unit and only
    refreshes it. Otherwise candidates are units with the same normalized
    address or inside the listing's geo window. The best score at or above
    the threshold wins; ties go to the lowest unit id. Never merges existing
    canonical units.
    """

    matcher = matcher or ListingMatcher()
    weights = matcher.weights

    listing = await fetch_normalized_listing(session, normalized_listing_id)
    if listing is None:
        raise LookupError(f"Normalized listing {normalized_listing_id} not found")

    address_key = normalize_address(listing.address)
    bucket = geo_bucket(listing.lat, listing.lng)

    listing_id = listing.id

    async with matcher.critical_section(address_key, bucket):
        try:
            posting = await fetch_posting_for_listing(session, listing_id)
            if posting is not None:
                unit = await fetch_canonical_unit(session, posting.canonical_unit_id)
                if unit is None:
                    raise LookupError(
                        f"Canonical unit {posting.canonical_unit_id} not found"
                    )
                score = posting.match_score
                canonical_unit_id = unit.id
                await append_change_logs(
                    session, _merge_listing(unit, listing, address_key)
                )
                await session.commit()

                logger.info(
                    "[dedupe] listing %s refreshed unit %s",
                    listing_id,
                    canonical_unit_id,
                )
                return DedupeResult(
                    created_new=False,
                    canonical_unit_id=canonical_unit_id,
                    score=score,
                    refreshed=True,
                )

            best, best_score = await _pick_candidate(
                session,
                listing,
                address_key=address_key,
                bucket=bucket,
                weights=weights,
            )

            if best is not None and best_score >= weights.threshold:
                await upsert_unit_posting(
                    session,
                    canonical_unit_id=best.id,
                    normalized_listing_id=listing_id,
                    match_score=best_score,
                )
                await append_change_logs(
                    session, _merge_listing(best, listing, address_key)
                )
                canonical_unit_id = best.id
                await session.commit()

                logger.info(
                    "[dedupe] listing %s attached to unit %s (score=%s)",
                    listing_id,
                    canonical_unit_id,
                    best_score,
                )
                return DedupeResult(
                    created_new=False,
                    canonical_unit_id=canonical_unit_id,
                    score=best_score,
                )

            unit = await create_canonical_unit_with_posting(
                session,
                listing,
                address_key=address_key,
                match_score=SELF_MATCH_SCORE,
            )
            canonical_unit_id = unit.id
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise StoreError(
                f"Failed to dedupe normalized listing {normalized_listing_id}"
            ) from e

    logger.info("[dedupe] listing %s created unit %s", listing_id, canonical_unit_id)
    return DedupeResult(
        created_new=True, canonical_unit_id=canonical_unit_id, score=SELF_MATCH_SCORE
    )


async def dedupe_all(
    session: AsyncSession, *, matcher: ListingMatcher | None = None
) -> DedupeSummary:
    """Dedupe every unposted listing, then refresh units from re-seen postings.

    Unposted listings are matched oldest first. Afterwards every posted
    listing observed more recently than its unit is folded into that unit
    so that re-ingested listings keep last_seen, prices and fees current.
    """

    matcher = matcher or ListingMatcher()
    summary = DedupeSummary()

    async def run(normalized_listing_id: int) -> DedupeResult | None:
        summary.processed += 1
        try:
            return await dedupe_and_upsert_canonical(
                session, normalized_listing_id, matcher=matcher
            )
        except (StoreError, LookupError) as e:
            summary.errors += 1
            logger.warning(
                "[dedupe] listing %s failed: %s", normalized_listing_id, e
            )
            return None

    for normalized_listing_id in await fetch_unposted_normalized_listing_ids(session):
        result = await run(normalized_listing_id)
        if result is None:
            continue
        if result.created_new:
            summary.created += 1
        else:
            summary.attached += 1

    for normalized_listing_id in await fetch_refreshable_normalized_listing_ids(
        session
    ):
        if await run(normalized_listing_id) is not None:
            summary.refreshed += 1

    logger.info(
        "[dedupe] processed=%s created=%s attached=%s refreshed=%s errors=%s",
        summary.processed,
        summary.created,
        summary.attached,
        summary.refreshed,
        summary.errors,
    )
    return summary
