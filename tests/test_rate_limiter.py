"""Tests for admission control."""

import asyncio

import pytest

from src.services.ratelimit.limiter import RateLimiter, RateLimitPolicy

POLICY = RateLimitPolicy(name="test", max_requests=3, window_seconds=60)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_rejects_request_over_the_limit():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)

    results = [await limiter.check("t1", "+5511", POLICY) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results[:3]] == [2, 1, 0]

    rejected = results[-1]
    assert rejected.remaining == 0
    assert rejected.limit == 3
    assert rejected.reset_at >= rejected.checked_at
    assert rejected.retry_after == 60


@pytest.mark.asyncio
async def test_window_slides():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)

    for _ in range(3):
        await limiter.check("t1", "+5511", POLICY)
    clock.now += 30
    assert not (await limiter.check("t1", "+5511", POLICY)).allowed

    clock.now += 31
    result = await limiter.check("t1", "+5511", POLICY)
    assert result.allowed
    assert result.remaining == 2


@pytest.mark.asyncio
async def test_keys_are_scoped_by_tenant_and_sender():
    limiter = RateLimiter(clock=FakeClock())

    for _ in range(3):
        await limiter.check("t1", "+5511", POLICY)

    assert not (await limiter.check("t1", "+5511", POLICY)).allowed
    assert (await limiter.check("t2", "+5511", POLICY)).allowed
    assert (await limiter.check("t1", "+5522", POLICY)).allowed


@pytest.mark.asyncio
async def test_concurrent_checks_never_exceed_limit():
    limiter = RateLimiter(clock=FakeClock())

    results = await asyncio.gather(*[limiter.check("t1", "+5511", POLICY) for _ in range(10)])

    assert sum(r.allowed for r in results) == 3


@pytest.mark.asyncio
async def test_reset_for_one_tenant():
    limiter = RateLimiter(clock=FakeClock())
    for tenant in ("t1", "t2"):
        for _ in range(3):
            await limiter.check(tenant, "+5511", POLICY)

    limiter.reset("t1")

    assert (await limiter.check("t1", "+5511", POLICY)).allowed
    assert not (await limiter.check("t2", "+5511", POLICY)).allowed
