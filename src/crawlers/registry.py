"""Name-keyed adapter registry and shared per-run dependencies."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from src.config import KNOWN_SOURCES, Settings
from src.crawlers.base import SourceAdapter
from src.crawlers.fixtures import MockCraigslistAdapter, MockStreetEasyAdapter
from src.crawlers.leasebreak import LeasebreakAdapter
from src.crawlers.streeteasy import StreetEasyAdapter, StreetEasyImportAdapter
from src.http.fetch_policy import FetchPolicy
from src.http.firecrawl import FirecrawlClient
from src.http.rate_limit import RateLimiter

ROOT_DIR: Final = Path(__file__).resolve().parents[2]

ADAPTER_NAMES: Final = KNOWN_SOURCES
MOCK_SOURCES: Final = ("mock_streeteasy", "mock_craigslist")
# Sources that may be discovered and fetched without a human in the loop.
AUTOMATED_SOURCES: Final = (*MOCK_SOURCES, "leasebreak", "streeteasy")


@dataclass(slots=True)
class AdapterDeps:
    """Per-run collaborators shared by every adapter built for that run."""

    settings: Settings
    rate_limiter: RateLimiter
    fetch_policy: FetchPolicy
    firecrawl: FirecrawlClient

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdapterDeps":
        rate_limiter = RateLimiter(
            settings.rate_limit_default_interval_ms,
            settings.rate_limit_domain_intervals_ms,
        )
        return cls(
            settings=settings,
            rate_limiter=rate_limiter,
            fetch_policy=FetchPolicy.from_settings(settings, rate_limiter),
            firecrawl=FirecrawlClient.from_settings(settings, rate_limiter),
        )

    @property
    def fixtures_dir(self) -> Path:
        path = Path(self.settings.fixtures_dir)
        return path if path.is_absolute() else ROOT_DIR / path

    async def aclose(self) -> None:
        await self.fetch_policy.aclose()
        await self.firecrawl.aclose()


_FACTORIES: Final[dict[str, Callable[[AdapterDeps], SourceAdapter]]] = {
    "mock_streeteasy": lambda deps: MockStreetEasyAdapter(deps.fixtures_dir),
    "mock_craigslist": lambda deps: MockCraigslistAdapter(deps.fixtures_dir),
    "leasebreak": lambda deps: LeasebreakAdapter(deps.fetch_policy, deps.firecrawl),
    "streeteasy": lambda deps: StreetEasyAdapter(deps.firecrawl),
    "streeteasy_import": lambda deps: StreetEasyImportAdapter(),
}


def build_adapter(name: str, deps: AdapterDeps) -> SourceAdapter:
    factory = _FACTORIES.get(name)
    if factory is None:
        raise ValueError(
            f"Unknown source adapter: {name}. Valid values are: {', '.join(ADAPTER_NAMES)}"
        )
    return factory(deps)


def build_adapters(
    names: Iterable[str] | None, deps: AdapterDeps
) -> list[SourceAdapter]:
    """Build adapters by name in the given order, or every registered adapter."""

    selected = list(ADAPTER_NAMES) if names is None else list(dict.fromkeys(names))
    return [build_adapter(name, deps) for name in selected]
