"""Redis-backed sliding window rate limiter shared by every service replica."""

from __future__ import annotations

import math
import time
from typing import Callable, Final

from redis import Redis
from redis.exceptions import ResponseError


class RedisSlidingWindowRateLimiter:
    """Distributed sliding window limiter implemented with Redis sorted sets.

    Each key holds one member per admitted request, scored by its timestamp in
    milliseconds. Members older than the window are trimmed on every call.
    """

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local counter_key = key .. ':seq'
    local window_ms = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, 0, now_ms - window_ms)
    if redis.call('ZCARD', key) >= max_requests then
        return 0
    end
    local seq = redis.call('INCR', counter_key)
    redis.call('PEXPIRE', counter_key, window_ms)
    redis.call('ZADD', key, now_ms, tostring(now_ms) .. ':' .. tostring(seq))
    redis.call('PEXPIRE', key, window_ms)
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "rate",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._clock = clock
        self._script = client.register_script(self._LUA_SCRIPT)

    def allow(self, key: str) -> bool:
        """Return ``True`` when the key is still within the distributed rate limit."""
        now_ms = self._now_ms()
        redis_key = self._key(key)
        try:
            result = self._script(keys=[redis_key], args=[self._window_ms, self._max_requests, now_ms])
            return int(result) == 1
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                return self._allow_fallback(redis_key, now_ms)
            raise

    def retry_after(self, key: str) -> int:
        """Whole seconds until the oldest admitted request leaves the window."""
        now_ms = self._now_ms()
        redis_key = self._key(key)
        self._client.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        if self._client.zcard(redis_key) < self._max_requests:
            return 0
        oldest = self._client.zrange(redis_key, 0, 0, withscores=True)
        if not oldest:
            return 0
        remaining_ms = int(oldest[0][1]) + self._window_ms - now_ms
        return max(1, math.ceil(remaining_ms / 1000))

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _allow_fallback(self, redis_key: str, now_ms: int) -> bool:
        """Client-side variant used when the server cannot run Lua scripts."""
        self._client.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        if self._client.zcard(redis_key) >= self._max_requests:
            return False
        seq = self._client.incr(f"{redis_key}:seq")
        self._client.pexpire(f"{redis_key}:seq", self._window_ms)
        self._client.zadd(redis_key, {f"{now_ms}:{seq}": now_ms})
        self._client.pexpire(redis_key, self._window_ms)
        return True
