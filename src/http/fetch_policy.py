"""Timeout, retry/backoff and rate-limit wrapper around raw HTTP fetches."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Final

import httpx

from src.config import Settings
from src.http.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS: Final = 12.0
DEFAULT_MAX_RETRIES: Final = 3
DEFAULT_BACKOFF_BASE_SECONDS: Final = 0.5
DEFAULT_USER_AGENT: Final = (
    "Mozilla/5.0 (compatible; RentRegistryBot/1.0; +https://example.invalid/bot)"
)
DEFAULT_HEADERS: Final = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


class TransportError(RuntimeError):
    """Network or timeout failure that survived every retry."""

    def __init__(self, url: str, attempts: int, cause: BaseException | None) -> None:
        self.url = url
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"All {attempts} attempts failed for url={url}: {cause}")


@dataclass(slots=True)
class FetchResponse:
    """Outcome of one successful fetch."""

    http_status: int
    content: str
    final_url: str


class FetchPolicy:
    """Fetch URLs with timeout, retries with jittered backoff and rate limiting."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._timeout_seconds = timeout_seconds
        self._max_retries = max(0, max_retries)
        self._backoff_base_seconds = max(0.0, backoff_base_seconds)
        self._headers = {"User-Agent": user_agent, **DEFAULT_HEADERS}
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            headers=self._headers,
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        rate_limiter: RateLimiter,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "FetchPolicy":
        return cls(
            rate_limiter,
            timeout_seconds=settings.fetch_timeout_seconds,
            max_retries=settings.fetch_max_retries,
            backoff_base_seconds=settings.fetch_backoff_base_seconds,
            user_agent=settings.fetch_user_agent,
            transport=transport,
        )

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def _backoff_seconds(self, attempt: int) -> float:
        base = self._backoff_base_seconds
        return base * (2 ** (attempt - 1)) + random.uniform(0, base)

    async def fetch(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        skip_rate_limit: bool = False,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
    ) -> FetchResponse:
        """GET a URL, returning status, body and final URL after redirects.

        Non-2xx statuses are returned as-is; only transport failures
        (connection errors, timeouts) are retried.
        """

        retries = self._max_retries if max_retries is None else max(0, max_retries)
        timeout = httpx.Timeout(timeout_seconds or self._timeout_seconds)
        request_headers = {**self._headers, **(headers or {})}
        total_attempts = retries + 1
        last_error: BaseException | None = None

        for attempt in range(total_attempts):
            if attempt > 0:
                backoff = self._backoff_seconds(attempt)
                logger.info(
                    "Retry %s/%s for url=%s (waiting %.2fs)",
                    attempt,
                    retries,
                    url,
                    backoff,
                )
                await self._sleep(backoff)

            if not skip_rate_limit:
                await self._rate_limiter.wait_for_url(url)

            try:
                response = await self._client.get(
                    url, headers=request_headers, timeout=timeout
                )
                return FetchResponse(
                    http_status=response.status_code,
                    content=response.text,
                    final_url=str(response.url) or url,
                )
            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    "Timeout after %.1fs for url=%s (attempt %s/%s)",
                    timeout.read or 0.0,
                    url,
                    attempt + 1,
                    total_attempts,
                )
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(
                    "Attempt %s/%s failed for url=%s: %s",
                    attempt + 1,
                    total_attempts,
                    url,
                    e,
                )

        raise TransportError(url, total_attempts, last_error) from last_error

    async def aclose(self) -> None:
        await self._client.aclose()
