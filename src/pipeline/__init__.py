"""Ingestion, matching, freshness and crawl orchestration."""

from src.pipeline.changes import detect_changes
from src.pipeline.dedupe import (
    DedupeResult,
    DedupeSummary,
    ListingMatcher,
    MatchWeights,
    dedupe_all,
    dedupe_and_upsert_canonical,
    score_candidate,
)
from src.pipeline.discovery import (
    build_search_query,
    filter_new_urls,
    record_job_error,
)
from src.pipeline.freshness import (
    FreshnessResult,
    classify_active_state,
    update_freshness,
)
from src.pipeline.ingest import (
    PARSE_VERSION,
    IngestStats,
    ingest_adapter,
    ingest_all,
    ingest_content,
    ingest_one,
)
from src.pipeline.registry_crawler import (
    RegistryCrawlerOptions,
    RegistryCrawlerStats,
    run_registry_crawler,
)
from src.pipeline.user_targeted_crawler import (
    UserTargetedStats,
    run_user_targeted_crawler,
)

__all__ = [
    "PARSE_VERSION",
    "DedupeResult",
    "DedupeSummary",
    "FreshnessResult",
    "IngestStats",
    "ListingMatcher",
    "MatchWeights",
    "RegistryCrawlerOptions",
    "RegistryCrawlerStats",
    "UserTargetedStats",
    "build_search_query",
    "classify_active_state",
    "dedupe_all",
    "dedupe_and_upsert_canonical",
    "detect_changes",
    "filter_new_urls",
    "record_job_error",
    "ingest_adapter",
    "ingest_all",
    "ingest_content",
    "ingest_one",
    "run_registry_crawler",
    "run_user_targeted_crawler",
    "score_candidate",
    "update_freshness",
]
