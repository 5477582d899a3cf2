from __future__ import annotations

import pytest

from src.http.rate_limit import RateLimiter, domain_for_url


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.anyio
async def test_first_wait_is_immediate_and_second_waits_full_interval() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1000, clock=clock, sleep=clock.sleep)

    await limiter.wait("example.com")
    await limiter.wait("example.com")

    assert clock.sleeps == [pytest.approx(1.0)]


@pytest.mark.anyio
async def test_wait_only_sleeps_for_remaining_interval() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1000, clock=clock, sleep=clock.sleep)

    await limiter.wait("example.com")
    clock.now += 0.4
    await limiter.wait("example.com")

    assert clock.sleeps == [pytest.approx(0.6)]


@pytest.mark.anyio
async def test_domains_are_limited_independently() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1000, clock=clock, sleep=clock.sleep)

    await limiter.wait("a.example.com")
    await limiter.wait("b.example.com")

    assert clock.sleeps == []


@pytest.mark.anyio
async def test_domain_override_and_case_insensitive_keys() -> None:
    clock = FakeClock()
    limiter = RateLimiter(
        1000, {"WWW.LeaseBreak.com": 1200}, clock=clock, sleep=clock.sleep
    )

    assert limiter.interval_for("www.leasebreak.com") == 1200
    assert limiter.interval_for("other.example") == 1000

    await limiter.wait("www.leasebreak.com")
    await limiter.wait("WWW.LEASEBREAK.COM")

    assert clock.sleeps == [pytest.approx(1.2)]


@pytest.mark.anyio
async def test_set_interval_zero_disables_waiting() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1000, clock=clock, sleep=clock.sleep)
    limiter.set_interval("fast.example", 0)

    await limiter.wait("fast.example")
    await limiter.wait("fast.example")

    assert clock.sleeps == []


@pytest.mark.anyio
async def test_wait_for_url_uses_hostname() -> None:
    clock = FakeClock()
    limiter = RateLimiter(500, clock=clock, sleep=clock.sleep)

    await limiter.wait_for_url("https://www.example.com/a")
    await limiter.wait_for_url("https://WWW.example.com/b?x=1")

    assert clock.sleeps == [pytest.approx(0.5)]


@pytest.mark.anyio
async def test_domain_for_url() -> None:
    assert domain_for_url("https://WWW.Leasebreak.com/x") == "www.leasebreak.com"
    assert domain_for_url("not a url") == "unknown"
    assert domain_for_url("file:///tmp/listing.json") == "unknown"
