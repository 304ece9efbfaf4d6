"""Sliding window rate limiting for registration and login attempts."""

from __future__ import annotations

import logging
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Protocol

import redis
from redis.exceptions import RedisError

from ..config import Settings
from .redis_rate_limiter import RedisSlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def allow(self, key: str) -> bool: ...

    def reset(self, key: str) -> None: ...


class SlidingWindowRateLimiter:
    """Thread-safe in-process sliding window limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._events: dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Record a hit for ``key`` and return ``True`` while it stays within the limit."""
        now = self._clock()
        with self._lock:
            self._sweep(now)
            queue = self._events.setdefault(key, deque())
            while queue and now - queue[0] >= self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                return False
            queue.append(now)
            return True

    def reset(self, key: str) -> None:
        """Forget every hit recorded for ``key``."""
        with self._lock:
            self._events.pop(key, None)

    def _sweep(self, now: float) -> None:
        # at most once per window; caller holds the lock
        if now - self._last_sweep < self._window:
            return
        self._last_sweep = now
        idle = [key for key, queue in self._events.items() if not queue or now - queue[-1] >= self._window]
        for key in idle:
            del self._events[key]


def build_rate_limiter(settings: Settings, max_requests: int, key_prefix: str) -> RateLimiter:
    """Instantiate the configured limiter backend, preferring Redis when reachable."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        client = redis.from_url(settings.redis_url)
        try:
            # fail fast so a dead Redis falls back to the in-process limiter
            client.ping()
        except RedisError as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("rate limiter %s configured for redis backend", key_prefix)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=max_requests,
                window_seconds=settings.rate_limit_window_seconds,
                key_prefix=key_prefix,
            )

    logger.info("rate limiter %s using in-memory backend", key_prefix)
    return SlidingWindowRateLimiter(
        max_requests=max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
