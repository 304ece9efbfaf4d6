"""Sliding window limiter kept in Redis so every replica shares one budget per key."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Final

from redis import Redis
from redis.client import Pipeline
from redis.exceptions import ResponseError

logger = logging.getLogger(__name__)

# KEYS[1]: window set. ARGV: now_ms, window_ms, max_requests, member.
_ADMIT_SCRIPT: Final[str] = """
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', tonumber(ARGV[1]) - tonumber(ARGV[2]))
if redis.call('ZCARD', KEYS[1]) >= tonumber(ARGV[3]) then
    return 0
end
redis.call('ZADD', KEYS[1], ARGV[1], ARGV[4])
redis.call('PEXPIRE', KEYS[1], ARGV[2])
return 1
"""


class RedisSlidingWindowRateLimiter:
    """Sorted-set window per key: one member per admitted hit, scored in milliseconds.

    Admission runs as a Lua script. Servers without scripting get the same
    check through a WATCH/MULTI transaction, which redis-py retries when
    another replica touches the window in between.
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "accounts:rate",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._clock = clock
        self._admit = client.register_script(_ADMIT_SCRIPT)
        self._scripting = True

    def allow(self, key: str) -> bool:
        """Record a hit for ``key`` and return ``True`` while it stays within the limit."""
        window_key = f"{self._key_prefix}:{key}"
        now_ms = int(self._clock() * 1000)
        member = f"{now_ms}-{uuid.uuid4().hex}"

        if self._scripting:
            try:
                admitted = self._admit(
                    keys=[window_key],
                    args=[now_ms, self._window_ms, self._max_requests, member],
                )
                return int(admitted) == 1
            except ResponseError as exc:
                if "unknown command" not in str(exc).lower():
                    raise
                logger.warning("redis scripting unavailable, using watched transactions: %s", exc)
                self._scripting = False

        return self._client.transaction(
            lambda pipe: self._admit_watched(pipe, window_key, now_ms, member),
            window_key,
            value_from_callable=True,
        )

    def reset(self, key: str) -> None:
        """Drop the whole window kept for ``key``."""
        self._client.delete(f"{self._key_prefix}:{key}")

    def _admit_watched(self, pipe: Pipeline, window_key: str, now_ms: int, member: str) -> bool:
        cutoff = now_ms - self._window_ms
        # reads run immediately while the key is watched; writes are queued after multi()
        live = pipe.zcount(window_key, f"({cutoff}", "+inf")
        admitted = live < self._max_requests
        pipe.multi()
        pipe.zremrangebyscore(window_key, "-inf", cutoff)
        if admitted:
            pipe.zadd(window_key, {member: now_ms})
            pipe.pexpire(window_key, self._window_ms)
        return admitted
