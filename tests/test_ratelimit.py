"""Tests for the sliding-window rate limiter, driven by a fake clock."""

import asyncio

import pytest

from app.core.ratelimit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _limiter(max_calls: int = 3, window: float = 60.0) -> tuple[SlidingWindowRateLimiter, FakeClock]:
    clock = FakeClock()
    return SlidingWindowRateLimiter(max_calls, window, clock=clock, sleep=clock.sleep), clock


def test_rejects_non_positive_limits():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(0)


@pytest.mark.asyncio
async def test_calls_within_the_limit_do_not_wait():
    limiter, clock = _limiter()
    for _ in range(3):
        assert await limiter.acquire() == 0.0
    assert clock.sleeps == []
    assert limiter.available() == 0


@pytest.mark.asyncio
async def test_call_over_the_limit_waits_for_the_oldest_to_expire():
    limiter, clock = _limiter()
    await limiter.acquire()
    clock.now = 10.0
    await limiter.acquire()
    await limiter.acquire()

    waited = await limiter.acquire()
    assert waited == pytest.approx(50.0)
    assert clock.now == pytest.approx(60.0)


@pytest.mark.asyncio
async def test_window_slides():
    limiter, clock = _limiter(max_calls=2, window=60.0)
    await limiter.acquire()
    await limiter.acquire()
    clock.now = 60.0
    assert limiter.available() == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_the_cap():
    limiter, clock = _limiter(max_calls=10, window=60.0)
    waits = await asyncio.gather(*(limiter.acquire() for _ in range(25)))

    assert sum(1 for w in waits if w > 0) == 2
    # 25 calls at a cap of 10 per minute need two further windows
    assert clock.now == pytest.approx(120.0)
