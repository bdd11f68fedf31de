"""Per-scope sliding window admission control for the SCIM surface.

Every SCIM request counts against ``scim:{scope_id}``, whether or not it is
admitted. Rejected requests are answered with 429 before the directory store
is touched.

Two backends:
  - ``RedisSlidingWindowRateLimiter``: sorted-set window shared by every
    replica. Use this whenever more than one process serves SCIM traffic,
    since per-process counters under-count load.
  - ``InMemorySlidingWindowRateLimiter``: lock protected, single process.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Protocol
from uuid import uuid4

from redis.client import Redis

from rolesync.configs.app_configs import SCIM_RATE_LIMIT_BACKEND
from rolesync.configs.app_configs import SCIM_RATE_LIMIT_MAX_REQUESTS
from rolesync.configs.app_configs import SCIM_RATE_LIMIT_WINDOW_SECONDS
from rolesync.utils.logger import setup_logger

logger = setup_logger()

SCIM_RATE_LIMIT_KEY_PREFIX = "scim"


def scim_rate_limit_key(scope_id: str) -> str:
    return f"{SCIM_RATE_LIMIT_KEY_PREFIX}:{scope_id}"


class RateLimiter(Protocol):
    def check(self, key: str) -> bool:
        """Count one request against ``key`` and return whether it is allowed."""
        ...


class InMemorySlidingWindowRateLimiter:
    def __init__(
        self,
        max_requests: int = SCIM_RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = SCIM_RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def _sweep(self, cutoff: float) -> None:
        # Drop keys whose newest hit has left the window.
        stale = [key for key, hits in self._hits.items() if hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def check(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self._window_seconds
        with self._lock:
            if now - self._last_sweep >= self._window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            hits.append(now)
            return len(hits) <= self._max_requests


class RedisSlidingWindowRateLimiter:
    """Sliding window over a Redis sorted set scored by timestamp.

    Trim, insert, count and expire run in one MULTI/EXEC block so concurrent
    requests from different replicas each see a consistent count.
    """

    def __init__(
        self,
        redis_client: Redis,
        max_requests: int = SCIM_RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = SCIM_RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis_client
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock

    def check(self, key: str) -> bool:
        now = self._clock()
        redis_key = f"ratelimit:{key}"

        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(redis_key, 0, now - self._window_seconds)
        pipe.zadd(redis_key, {f"{now}:{uuid4().hex}": now})
        pipe.zcard(redis_key)
        pipe.expire(redis_key, math.ceil(self._window_seconds))
        _, _, count, _ = pipe.execute()

        return int(count) <= self._max_requests


def build_rate_limiter(backend: str = SCIM_RATE_LIMIT_BACKEND) -> RateLimiter:
    if backend == "memory":
        logger.info("Using in-memory SCIM rate limiter")
        return InMemorySlidingWindowRateLimiter()

    if backend != "redis":
        raise ValueError(f"Unknown SCIM rate limit backend: {backend}")

    from rolesync.redis.redis_pool import get_redis_client

    logger.info("Using Redis SCIM rate limiter")
    return RedisSlidingWindowRateLimiter(get_redis_client())
