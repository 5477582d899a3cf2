"""Per-domain minimum-interval request gate."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Final
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS: Final = 1000


def domain_for_url(url: str) -> str:
    """Return the lowercase hostname of a URL, or "unknown" when it has none."""

    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return "unknown"
    return hostname.lower() if hostname else "unknown"


class RateLimiter:
    """Enforce a minimum delay between granted waits for the same domain.

    Construct one instance per crawl run and pass it to every fetch path that
    talks to the network; state is kept in memory only.
    """

    def __init__(
        self,
        default_interval_ms: int = DEFAULT_INTERVAL_MS,
        domain_intervals_ms: Mapping[str, int] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._default_interval_ms = max(0, default_interval_ms)
        self._domain_intervals_ms = {
            domain.lower(): max(0, interval)
            for domain, interval in (domain_intervals_ms or {}).items()
        }
        self._clock = clock
        self._sleep = sleep
        self._last_grant: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def interval_for(self, domain_key: str) -> int:
        """Minimum interval in milliseconds for a domain."""

        return self._domain_intervals_ms.get(
            domain_key.lower(), self._default_interval_ms
        )

    def set_interval(self, domain_key: str, interval_ms: int) -> None:
        self._domain_intervals_ms[domain_key.lower()] = max(0, interval_ms)

    async def wait(self, domain_key: str) -> None:
        """Block until the domain's interval has elapsed, then record the grant."""

        key = domain_key.lower()
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            interval_seconds = self.interval_for(key) / 1000
            last = self._last_grant.get(key)
            if last is not None:
                remaining = interval_seconds - (self._clock() - last)
                if remaining > 0:
                    logger.debug(
                        "Rate limiting domain=%s for %.3fs", key, remaining
                    )
                    await self._sleep(remaining)
            self._last_grant[key] = self._clock()

    async def wait_for_url(self, url: str) -> None:
        await self.wait(domain_for_url(url))
