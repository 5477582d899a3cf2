# ruff: noqa: E402

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from src.config import get_settings
from src.crawlers.registry import (
    AUTOMATED_SOURCES,
    MOCK_SOURCES,
    AdapterDeps,
    build_adapters,
)
from src.db.session import dispose_engine, session_context
from src.pipeline.dedupe import ListingMatcher, dedupe_all
from src.pipeline.freshness import update_freshness
from src.pipeline.ingest import ingest_all
from src.pipeline.registry_crawler import RegistryCrawlerOptions, run_registry_crawler
from src.pipeline.user_targeted_crawler import run_user_targeted_crawler

MODES = ("ingest", "registry", "user-targeted", "freshness")
SOURCE_GROUPS: dict[str, tuple[str, ...]] = {
    "mock": MOCK_SOURCES,
    "leasebreak": ("leasebreak",),
    "streeteasy": ("streeteasy",),
    "all": AUTOMATED_SOURCES,
}
IMPORT_ONLY_SOURCES = frozenset({"streeteasy_import"})


@dataclass(frozen=True)
class CliArgs:
    mode: str = "ingest"
    source: str = "mock"
    limit: int | None = None
    target: int | None = None
    max_urls: int | None = None
    batch_size: int | None = None


def _positive_int(value: str) -> int:
    parsed = int(value)
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return parsed


def _parse_args(argv: Sequence[str] | None = None) -> CliArgs:
    parser = argparse.ArgumentParser(
        description="Run ingestion, registry fill, saved-search crawl or freshness once."
    )
    parser.add_argument("--mode", choices=MODES, default="ingest")
    parser.add_argument(
        "--source",
        default="mock",
        help=f"Source group: {', '.join(SOURCE_GROUPS)} (default: mock).",
    )
    parser.add_argument("--limit", type=_positive_int, help="Max URLs per source (ingest).")
    parser.add_argument(
        "--target", type=_positive_int, help="Target canonical unit count (registry)."
    )
    parser.add_argument(
        "--max-urls", type=_positive_int, help="URL budget per run (registry)."
    )
    parser.add_argument(
        "--batch-size", type=_positive_int, help="URLs per source per pass (registry)."
    )

    parsed = parser.parse_args(argv)
    source = str(parsed.source).strip().lower()
    if source in IMPORT_ONLY_SOURCES:
        parser.error(
            f"{source} cannot be crawled; submit captured page content through the "
            "import channel instead"
        )
    if source not in SOURCE_GROUPS:
        parser.error(
            f"unknown --source {source!r}; choose one of {', '.join(SOURCE_GROUPS)}"
        )

    return CliArgs(
        mode=str(parsed.mode),
        source=source,
        limit=parsed.limit,
        target=parsed.target,
        max_urls=parsed.max_urls,
        batch_size=parsed.batch_size,
    )


def _registry_options(args: CliArgs, sources: Sequence[str]) -> RegistryCrawlerOptions:
    options = RegistryCrawlerOptions.from_settings(get_settings())
    options.sources = list(sources)
    if args.target is not None:
        options.target_canonical_count = args.target
    if args.max_urls is not None:
        options.max_urls_per_run = args.max_urls
    if args.batch_size is not None:
        options.batch_size = args.batch_size
    return options


async def _run(args: CliArgs) -> dict[str, object]:
    settings = get_settings()
    sources = SOURCE_GROUPS[args.source]
    matcher = ListingMatcher.from_settings(settings)
    report: dict[str, object] = {
        "mode": args.mode,
        "source": args.source,
        "executed_at": datetime.now(UTC).isoformat(),
    }

    deps = AdapterDeps.from_settings(settings)
    try:
        adapters = build_adapters(sources, deps)
        async with session_context() as session:
            if args.mode == "ingest":
                results = await ingest_all(session, adapters, limit=args.limit)
                summary = await dedupe_all(session, matcher=matcher)
                freshness = await update_freshness(session)
                report["sources"] = {
                    name: stats.as_dict() for name, stats in results.items()
                }
                report["dedupe"] = {
                    "processed": summary.processed,
                    "created": summary.created,
                    "attached": summary.attached,
                    "refreshed": summary.refreshed,
                    "errors": summary.errors,
                }
                report["freshness"] = {
                    "active": freshness.active,
                    "unknown": freshness.unknown,
                    "stale": freshness.stale,
                }
            elif args.mode == "registry":
                stats = await run_registry_crawler(
                    session,
                    adapters,
                    _registry_options(args, sources),
                    matcher=matcher,
                )
                report["registry"] = stats.as_dict()
            elif args.mode == "user-targeted":
                targeted = await run_user_targeted_crawler(
                    session,
                    adapters,
                    max_per_search=settings.user_targeted_max_per_search,
                    discovery_limit=settings.user_targeted_discovery_limit,
                    matcher=matcher,
                )
                report["user_targeted"] = targeted.as_dict()
            else:
                freshness = await update_freshness(session)
                report["freshness"] = {
                    "active": freshness.active,
                    "unknown": freshness.unknown,
                    "stale": freshness.stale,
                }
    finally:
        await deps.aclose()

    return report


async def _async_main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = _parse_args(argv)
    try:
        report = await _run(args)
    finally:
        await dispose_engine()
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(_async_main()))


if __name__ == "__main__":
    main()
