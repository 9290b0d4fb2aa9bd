"""In-memory sliding window rate limiter and backend selection."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, DefaultDict, Protocol

import redis
from redis.exceptions import RedisError

from ..config import Settings
from .redis_rate_limiter import RedisSlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def allow(self, key: str) -> bool: ...

    def retry_after(self, key: str) -> int: ...


class SlidingWindowRateLimiter:
    """Thread-safe sliding window rate limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Return ``True`` when the request is within the configured rate limit."""
        now = self._clock()
        with self._lock:
            queue = self._prune(key, now)
            if len(queue) >= self._max_requests:
                return False
            queue.append(now)
            return True

    def retry_after(self, key: str) -> int:
        """Whole seconds until the oldest request in the window ages out."""
        now = self._clock()
        with self._lock:
            queue = self._prune(key, now)
            if len(queue) < self._max_requests:
                return 0
            return max(1, math.ceil(self._window - (now - queue[0])))

    def reset(self) -> None:
        with self._lock:
            self._events.clear()

    def _prune(self, key: str, now: float) -> Deque[float]:
        queue = self._events[key]
        while queue and now - queue[0] >= self._window:
            queue.popleft()
        return queue


def build_rate_limiter(settings: Settings, *, max_requests: int, prefix: str) -> RateLimiter:
    """Instantiate the configured backend, preferring Redis when reachable."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            client.ping()
        except RedisError as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("%s rate limiter configured for redis backend", prefix)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=max_requests,
                window_seconds=settings.rate_limit_window_seconds,
                key_prefix=f"pm-identity:{prefix}",
            )

    logger.info("%s rate limiter using in-memory backend", prefix)
    return SlidingWindowRateLimiter(
        max_requests=max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
