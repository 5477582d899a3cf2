"""Repository helpers for listing, registry and crawl bookkeeping persistence."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.canonical_unit import CanonicalUnit
from src.models.change_log import ChangeLog
from src.models.normalized_listing import NormalizedListing
from src.models.raw_listing import RawListing
from src.models.saved_search import SavedSearch
from src.models.scrape_job import ScrapeJob
from src.models.unit_posting import UnitPosting


class StoreError(RuntimeError):
    """Persistence failure that aborts the current unit of work."""


@dataclass(slots=True)
class NormalizedListingUpsert:
    """Source-agnostic listing fields produced by an adapter's parse step.

    Every field other than ``title`` is independently present or absent.
    """

    title: str
    description: str | None = None
    address: str | None = None
    unit: str | None = None
    neighborhood: str | None = None
    borough: str | None = None
    lat: float | None = None
    lng: float | None = None
    rent_gross: int | None = None
    rent_net_effective: int | None = None
    bedrooms: float | None = None
    bathrooms: float | None = None
    broker_fee: bool | None = None
    lease_term_months: int | None = None
    move_in_cost_notes: str | None = None
    pet_policy: str | None = None
    laundry: str | None = None
    elevator: bool | None = None
    doorman: bool | None = None
    images: list[str] = field(default_factory=list)

    def to_snapshot(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ChangeLogCreate:
    """Payload used to append a change log row."""

    canonical_unit_id: int
    kind: str
    payload: dict[str, Any]
    normalized_listing_id: int | None = None


def _dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


async def upsert_raw_listing(
    session: AsyncSession,
    *,
    source: str,
    source_url: str,
    source_listing_id: str | None,
    http_status: int | None,
    raw_content: str | None,
    fetched_at: datetime,
    parse_version: str,
) -> int:
    """Insert or refresh the raw fetch snapshot for (source, source_url)."""

    values: dict[str, Any] = {
        "source": source,
        "source_url": source_url,
        "source_listing_id": source_listing_id,
        "http_status": http_status,
        "raw_content": raw_content,
        "fetched_at": fetched_at,
        "parse_version": parse_version,
    }

    if _dialect_name(session) == "postgresql":
        stmt = pg_insert(RawListing).values(**values)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_raw_listings_source_url",
            set_={
                "source_listing_id": func.coalesce(
                    stmt.excluded.source_listing_id, RawListing.source_listing_id
                ),
                "http_status": stmt.excluded.http_status,
                "raw_content": stmt.excluded.raw_content,
                "fetched_at": stmt.excluded.fetched_at,
                "parse_version": stmt.excluded.parse_version,
                "updated_at": func.now(),
            },
        ).returning(RawListing.id)
        return (await session.execute(stmt)).scalar_one()

    existing = (
        await session.execute(
            select(RawListing)
            .where(RawListing.source == source)
            .where(RawListing.source_url == source_url)
        )
    ).scalar_one_or_none()

    if existing is None:
        raw_listing = RawListing(**values)
        session.add(raw_listing)
        await session.flush()
        return raw_listing.id

    if source_listing_id is not None:
        existing.source_listing_id = source_listing_id
    existing.http_status = http_status
    existing.raw_content = raw_content
    existing.fetched_at = fetched_at
    existing.parse_version = parse_version
    await session.flush()
    return existing.id


async def record_extracted_json(
    session: AsyncSession, raw_listing_id: int, snapshot: dict[str, Any]
) -> None:
    """Write the parse result back onto the raw listing as an audit snapshot."""

    await session.execute(
        update(RawListing)
        .where(RawListing.id == raw_listing_id)
        .values(extracted_json=snapshot)
    )


async def upsert_normalized_listing(
    session: AsyncSession,
    *,
    raw_listing_id: int,
    source: str,
    source_url: str,
    payload: NormalizedListingUpsert,
    seen_at: datetime,
) -> int:
    """Insert or overwrite the normalized view of (source, source_url).

    ``first_seen_at`` is only written on insert; ``last_seen_at`` is bumped on
    every call.
    """

    fields = asdict(payload)

    if _dialect_name(session) == "postgresql":
        stmt = pg_insert(NormalizedListing).values(
            raw_listing_id=raw_listing_id,
            source=source,
            source_url=source_url,
            first_seen_at=seen_at,
            last_seen_at=seen_at,
            **fields,
        )
        set_values: dict[str, Any] = {
            name: getattr(stmt.excluded, name) for name in fields
        }
        set_values["raw_listing_id"] = stmt.excluded.raw_listing_id
        set_values["last_seen_at"] = stmt.excluded.last_seen_at
        stmt = stmt.on_conflict_do_update(
            constraint="uq_normalized_listings_source_url",
            set_=set_values,
        ).returning(NormalizedListing.id)
        return (await session.execute(stmt)).scalar_one()

    existing = (
        await session.execute(
            select(NormalizedListing)
            .where(NormalizedListing.source == source)
            .where(NormalizedListing.source_url == source_url)
        )
    ).scalar_one_or_none()

    if existing is None:
        listing = NormalizedListing(
            raw_listing_id=raw_listing_id,
            source=source,
            source_url=source_url,
            first_seen_at=seen_at,
            last_seen_at=seen_at,
            **fields,
        )
        session.add(listing)
        await session.flush()
        return listing.id

    for name, value in fields.items():
        setattr(existing, name, value)
    existing.raw_listing_id = raw_listing_id
    existing.last_seen_at = seen_at
    await session.flush()
    return existing.id


async def fetch_normalized_listing(
    session: AsyncSession, normalized_listing_id: int
) -> NormalizedListing | None:
    return await session.get(
        NormalizedListing, normalized_listing_id, populate_existing=True
    )


async def fetch_existing_source_urls(
    session: AsyncSession, source: str, source_urls: list[str]
) -> set[str]:
    """Return the subset of URLs already stored as normalized listings."""

    if not source_urls:
        return set()

    stmt = (
        select(NormalizedListing.source_url)
        .where(NormalizedListing.source == source)
        .where(NormalizedListing.source_url.in_(source_urls))
    )
    return set((await session.execute(stmt)).scalars().all())


async def fetch_unposted_normalized_listing_ids(session: AsyncSession) -> list[int]:
    """Normalized listings that are not attached to any canonical unit yet."""

    stmt = (
        select(NormalizedListing.id)
        .where(
            ~exists().where(UnitPosting.normalized_listing_id == NormalizedListing.id)
        )
        .order_by(NormalizedListing.id.asc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def fetch_refreshable_normalized_listing_ids(
    session: AsyncSession,
) -> list[int]:
    """Posted listings observed more recently than their canonical unit."""

    stmt = (
        select(NormalizedListing.id)
        .join(UnitPosting, UnitPosting.normalized_listing_id == NormalizedListing.id)
        .join(CanonicalUnit, CanonicalUnit.id == UnitPosting.canonical_unit_id)
        .where(NormalizedListing.last_seen_at > CanonicalUnit.last_seen_at)
        .distinct()
        .order_by(NormalizedListing.id.asc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def fetch_posting_for_listing(
    session: AsyncSession, normalized_listing_id: int
) -> UnitPosting | None:
    stmt = (
        select(UnitPosting)
        .where(UnitPosting.normalized_listing_id == normalized_listing_id)
        .order_by(UnitPosting.id.asc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def fetch_canonical_candidates(
    session: AsyncSession,
    *,
    address_key: str | None,
    bounds: tuple[float, float, float, float] | None,
) -> list[CanonicalUnit]:
    """Find canonical units by exact address key OR lat/lng bounding box.

    Results are ordered by id so callers get a stable tie-break.
    """

    conditions = []
    if address_key:
        conditions.append(CanonicalUnit.canonical_address == address_key)
    if bounds is not None:
        min_lat, max_lat, min_lng, max_lng = bounds
        conditions.append(
            and_(
                CanonicalUnit.lat.is_not(None),
                CanonicalUnit.lng.is_not(None),
                CanonicalUnit.lat.between(min_lat, max_lat),
                CanonicalUnit.lng.between(min_lng, max_lng),
            )
        )
    if not conditions:
        return []

    stmt = (
        select(CanonicalUnit)
        .where(or_(*conditions))
        .order_by(CanonicalUnit.id.asc())
        .execution_options(populate_existing=True)
    )
    return list((await session.execute(stmt)).scalars().all())


async def fetch_canonical_unit(
    session: AsyncSession, canonical_unit_id: int
) -> CanonicalUnit | None:
    return await session.get(
        CanonicalUnit, canonical_unit_id, populate_existing=True
    )


async def create_canonical_unit_with_posting(
    session: AsyncSession,
    listing: NormalizedListing,
    *,
    address_key: str | None,
    match_score: float = 100,
) -> CanonicalUnit:
    """Create a canonical unit seeded from a listing plus its self posting."""

    unit = CanonicalUnit(
        canonical_address=address_key,
        canonical_unit=listing.unit,
        neighborhood=listing.neighborhood,
        borough=listing.borough,
        lat=listing.lat,
        lng=listing.lng,
        bedrooms=listing.bedrooms,
        bathrooms=listing.bathrooms,
        best_rent_gross=listing.rent_gross,
        best_rent_net_effective=listing.rent_net_effective,
        broker_fee=listing.broker_fee,
        active_state="active",
        last_seen_at=listing.last_seen_at,
    )
    session.add(unit)
    await session.flush()

    session.add(
        UnitPosting(
            canonical_unit_id=unit.id,
            normalized_listing_id=listing.id,
            match_score=match_score,
        )
    )
    await session.flush()
    return unit


async def upsert_unit_posting(
    session: AsyncSession,
    *,
    canonical_unit_id: int,
    normalized_listing_id: int,
    match_score: float,
) -> None:
    """Insert a posting or refresh its score on conflict."""

    if _dialect_name(session) == "postgresql":
        stmt = pg_insert(UnitPosting).values(
            canonical_unit_id=canonical_unit_id,
            normalized_listing_id=normalized_listing_id,
            match_score=match_score,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_unit_postings_unit_listing",
            set_={"match_score": stmt.excluded.match_score},
        )
        await session.execute(stmt)
        return

    existing = (
        await session.execute(
            select(UnitPosting)
            .where(UnitPosting.canonical_unit_id == canonical_unit_id)
            .where(UnitPosting.normalized_listing_id == normalized_listing_id)
        )
    ).scalar_one_or_none()

    if existing is None:
        session.add(
            UnitPosting(
                canonical_unit_id=canonical_unit_id,
                normalized_listing_id=normalized_listing_id,
                match_score=match_score,
            )
        )
    else:
        existing.match_score = match_score
    await session.flush()


async def fetch_unit_postings(
    session: AsyncSession, canonical_unit_id: int
) -> list[UnitPosting]:
    stmt = (
        select(UnitPosting)
        .where(UnitPosting.canonical_unit_id == canonical_unit_id)
        .order_by(UnitPosting.id.asc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def append_change_logs(
    session: AsyncSession, changes: list[ChangeLogCreate]
) -> int:
    """Append change log rows. Existing rows are never modified."""

    if not changes:
        return 0

    session.add_all(
        ChangeLog(
            canonical_unit_id=change.canonical_unit_id,
            normalized_listing_id=change.normalized_listing_id,
            kind=change.kind,
            payload=change.payload,
        )
        for change in changes
    )
    await session.flush()
    return len(changes)


async def fetch_change_logs(
    session: AsyncSession, canonical_unit_id: int
) -> list[ChangeLog]:
    stmt = (
        select(ChangeLog)
        .where(ChangeLog.canonical_unit_id == canonical_unit_id)
        .order_by(ChangeLog.id.asc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def update_active_state(
    session: AsyncSession,
    *,
    state: str,
    seen_since: datetime | None = None,
    seen_before: datetime | None = None,
) -> int:
    """Bulk-set active_state for units in a last_seen_at window.

    ``seen_since`` is inclusive and ``seen_before`` exclusive. Rows already in
    the target state are left untouched. Returns the number of rows changed.
    """

    stmt = update(CanonicalUnit).where(CanonicalUnit.active_state != state)
    if seen_since is not None:
        stmt = stmt.where(CanonicalUnit.last_seen_at >= seen_since)
    if seen_before is not None:
        stmt = stmt.where(CanonicalUnit.last_seen_at < seen_before)
    stmt = stmt.values(active_state=state).execution_options(
        synchronize_session=False
    )

    result = await session.execute(stmt)
    return int(result.rowcount or 0)


async def count_canonical_units(session: AsyncSession) -> int:
    total = (
        await session.execute(select(func.count(CanonicalUnit.id)))
    ).scalar_one_or_none()
    return int(total or 0)


async def fetch_active_saved_searches(session: AsyncSession) -> list[SavedSearch]:
    stmt = (
        select(SavedSearch)
        .where(SavedSearch.is_active.is_(True))
        .order_by(SavedSearch.id.asc())
    )
    return list((await session.execute(stmt)).scalars().all())


async def get_or_create_scrape_job(
    session: AsyncSession,
    *,
    source: str,
    mode: str,
    query: str | None,
    target_count: int,
) -> ScrapeJob:
    """Reuse the active job for a campaign or start a new one."""

    stmt = (
        select(ScrapeJob)
        .where(ScrapeJob.source == source)
        .where(ScrapeJob.mode == mode)
        .where(ScrapeJob.status == "active")
        .order_by(ScrapeJob.id.asc())
        .limit(1)
    )
    if query is None:
        stmt = stmt.where(ScrapeJob.query.is_(None))
    else:
        stmt = stmt.where(ScrapeJob.query == query)

    job = (await session.execute(stmt)).scalar_one_or_none()
    if job is not None:
        if job.target_count != target_count:
            job.target_count = target_count
            await session.flush()
        return job

    job = ScrapeJob(
        source=source,
        mode=mode,
        query=query,
        status="active",
        target_count=target_count,
        discovered_count=0,
        ingested_count=0,
        canonical_added_count=0,
        error_count=0,
    )
    session.add(job)
    await session.flush()
    return job


async def increment_scrape_job_counters(
    session: AsyncSession,
    job: ScrapeJob,
    *,
    discovered: int = 0,
    ingested: int = 0,
    canonical_added: int = 0,
    errors: int = 0,
    status: str | None = None,
    cursor: dict[str, Any] | None = None,
) -> ScrapeJob:
    """Atomically add to a job's counters and optionally change its status."""

    values: dict[str, Any] = {
        "discovered_count": ScrapeJob.discovered_count + discovered,
        "ingested_count": ScrapeJob.ingested_count + ingested,
        "canonical_added_count": ScrapeJob.canonical_added_count + canonical_added,
        "error_count": ScrapeJob.error_count + errors,
        "updated_at": func.now(),
    }
    if status is not None:
        values["status"] = status
    if cursor is not None:
        values["cursor_json"] = cursor

    await session.execute(
        update(ScrapeJob)
        .where(ScrapeJob.id == job.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.refresh(job)
    return job
