"""Database session and repository utilities."""

from src.db.session import (
    dispose_engine,
    get_engine,
    get_sessionmaker,
    session_context,
)
from src.db.repositories import (
    ChangeLogCreate,
    NormalizedListingUpsert,
    StoreError,
    append_change_logs,
    count_canonical_units,
    create_canonical_unit_with_posting,
    fetch_active_saved_searches,
    fetch_canonical_candidates,
    fetch_canonical_unit,
    fetch_change_logs,
    fetch_existing_source_urls,
    fetch_normalized_listing,
    fetch_posting_for_listing,
    fetch_refreshable_normalized_listing_ids,
    fetch_unit_postings,
    fetch_unposted_normalized_listing_ids,
    get_or_create_scrape_job,
    increment_scrape_job_counters,
    record_extracted_json,
    update_active_state,
    upsert_normalized_listing,
    upsert_raw_listing,
    upsert_unit_posting,
)

__all__ = [
    "dispose_engine",
    "get_engine",
    "get_sessionmaker",
    "session_context",
    "ChangeLogCreate",
    "NormalizedListingUpsert",
    "StoreError",
    "append_change_logs",
    "count_canonical_units",
    "create_canonical_unit_with_posting",
    "fetch_active_saved_searches",
    "fetch_canonical_candidates",
    "fetch_canonical_unit",
    "fetch_change_logs",
    "fetch_existing_source_urls",
    "fetch_normalized_listing",
    "fetch_posting_for_listing",
    "fetch_refreshable_normalized_listing_ids",
    "fetch_unit_postings",
    "fetch_unposted_normalized_listing_ids",
    "get_or_create_scrape_job",
    "increment_scrape_job_counters",
    "record_extracted_json",
    "update_active_state",
    "upsert_normalized_listing",
    "upsert_raw_listing",
    "upsert_unit_posting",
]
