"""Tests for the in-memory and Redis-backed sliding window rate limiters."""

from __future__ import annotations

from dataclasses import replace

import fakeredis
import pytest

from pm_identity.security.rate_limiter import SlidingWindowRateLimiter, build_rate_limiter
from pm_identity.security.redis_rate_limiter import RedisSlidingWindowRateLimiter


class ManualClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


@pytest.fixture()
def manual_clock() -> ManualClock:
    return ManualClock()


def test_memory_limiter_blocks_excess_and_recovers(manual_clock):
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=manual_clock)

    assert limiter.allow("login:10.0.0.1")
    assert limiter.allow("login:10.0.0.1")
    assert not limiter.allow("login:10.0.0.1")
    assert limiter.allow("login:10.0.0.2")

    manual_clock.value += 60
    assert limiter.allow("login:10.0.0.1")


def test_memory_limiter_retry_after(manual_clock):
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=manual_clock)

    assert limiter.retry_after("key") == 0
    limiter.allow("key")
    manual_clock.value += 15.5

    assert limiter.retry_after("key") == 45


def test_memory_limiter_reset(manual_clock):
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=manual_clock)
    limiter.allow("key")

    limiter.reset()

    assert limiter.allow("key")


def test_redis_rate_limiter_allows_within_threshold(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=3, window_seconds=1, key_prefix="test"
    )
    key = "login:10.0.0.1"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert limiter.allow(key)


def test_redis_rate_limiter_blocks_excess(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=2, window_seconds=1, key_prefix="test"
    )
    key = "login:10.0.0.1"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert not limiter.allow(key)


def test_redis_rate_limiter_window_slides(redis_client, manual_clock):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=1, window_seconds=10, key_prefix="test", clock=manual_clock
    )
    key = "refresh:10.0.0.1"
    assert limiter.allow(key)
    assert not limiter.allow(key)

    manual_clock.value += 4
    assert limiter.retry_after(key) == 6

    manual_clock.value += 6
    assert limiter.retry_after(key) == 0
    assert limiter.allow(key)


def test_build_rate_limiter_defaults_to_memory(settings):
    limiter = build_rate_limiter(settings, max_requests=5, prefix="auth")

    assert isinstance(limiter, SlidingWindowRateLimiter)


def test_build_rate_limiter_falls_back_when_redis_unreachable(settings):
    redis_settings = replace(settings, rate_limit_backend="redis", redis_url="redis://127.0.0.1:1/0")

    limiter = build_rate_limiter(redis_settings, max_requests=5, prefix="auth")

    assert isinstance(limiter, SlidingWindowRateLimiter)
