"""Redis locks that keep crawl orchestrators from running or queueing twice."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from time import monotonic

from redis.asyncio import Redis

from src.config import get_settings

# Used instead of redis when TASKIQ_TESTING is set.
_MEMORY_LOCKS: dict[str, float] = {}


def build_dedup_key(*, scope: str, task_name: str, fingerprint: str) -> str:
    """Namespaced lock key, e.g. ``dedup:execution:crawl_registry:default``."""

    return f"dedup:{scope}:{task_name}:{fingerprint}"


def _redis_client() -> Redis:
    return Redis.from_url(
        get_settings().redis_url, encoding="utf-8", decode_responses=True
    )


def _acquire_memory_lock(key: str, ttl_seconds: int) -> bool:
    now = monotonic()
    for lock_key, expiry in list(_MEMORY_LOCKS.items()):
        if expiry <= now:
            del _MEMORY_LOCKS[lock_key]

    if key in _MEMORY_LOCKS:
        return False
    _MEMORY_LOCKS[key] = now + ttl_seconds
    return True


async def acquire_dedup_lock(key: str, ttl_seconds: int) -> bool:
    """Take the lock with SET NX EX; False when someone else holds it."""

    if get_settings().taskiq_testing:
        return _acquire_memory_lock(key, ttl_seconds)

    client = _redis_client()
    try:
        return bool(await client.set(key, "1", nx=True, ex=ttl_seconds))
    finally:
        await client.aclose()


async def release_dedup_lock(key: str) -> None:
    if get_settings().taskiq_testing:
        _MEMORY_LOCKS.pop(key, None)
        return

    client = _redis_client()
    try:
        await client.delete(key)
    finally:
        await client.aclose()


@asynccontextmanager
async def execution_lock(
    task_name: str, *, fingerprint: str = "default", ttl_seconds: int | None = None
) -> AsyncIterator[bool]:
    """Hold the execution lock for a task while the block runs.

    Yields whether the lock was acquired. The lock is released on exit only
    when it was taken here.
    """

    ttl = ttl_seconds if ttl_seconds is not None else get_settings().crawl_dedup_ttl_seconds
    key = build_dedup_key(scope="execution", task_name=task_name, fingerprint=fingerprint)
    acquired = await acquire_dedup_lock(key, ttl)
    try:
        yield acquired
    finally:
        if acquired:
            await release_dedup_lock(key)
