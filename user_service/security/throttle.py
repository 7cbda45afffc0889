"""Sliding-window throttles guarding the credential endpoints."""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict, deque
from threading import Lock
from typing import Protocol

import redis

logger = logging.getLogger(__name__)


class Throttle(Protocol):
    def allow(self, key: str) -> bool: ...


class AttemptThrottle:
    """Per-process throttle counting attempts per key inside a rolling window."""

    def __init__(self, max_attempts: int, window_seconds: int) -> None:
        self._max_attempts = max_attempts
        self._window = window_seconds
        self._attempts: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = Lock()
        self._last_sweep = time.monotonic()

    def allow(self, key: str) -> bool:
        """Record an attempt for ``key`` and report whether it is within budget."""
        now = time.monotonic()
        cutoff = now - self._window
        with self._lock:
            attempts = self._attempts[key]
            while attempts and attempts[0] <= cutoff:
                attempts.popleft()
            if len(attempts) >= self._max_attempts:
                return False
            attempts.append(now)
            if now - self._last_sweep >= self._window:
                self._sweep(cutoff)
                self._last_sweep = now
            return True

    def _sweep(self, cutoff: float) -> None:
        # Caller holds the lock.
        stale = [key for key, attempts in self._attempts.items() if not attempts or attempts[-1] <= cutoff]
        for key in stale:
            del self._attempts[key]


class RedisAttemptThrottle:
    """Throttle shared by all workers, kept in one Redis sorted set per key.

    Members are unique attempt ids scored by their timestamp in milliseconds.
    Pruning, counting and recording happen in one ``MULTI`` block; a rejected
    attempt is removed again so it does not consume budget.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        max_attempts: int,
        window_seconds: int,
        namespace: str = "throttle",
    ) -> None:
        self._client = client
        self._max_attempts = max_attempts
        self._window_ms = window_seconds * 1000
        self._namespace = namespace

    def allow(self, key: str) -> bool:
        now_ms = int(time.time() * 1000)
        redis_key = f"{self._namespace}:{key}"
        member = f"{now_ms}:{uuid.uuid4().hex}"

        pipe = self._client.pipeline(transaction=True)
        pipe.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        pipe.zadd(redis_key, {member: now_ms})
        pipe.zcard(redis_key)
        pipe.pexpire(redis_key, self._window_ms)
        _, _, count, _ = pipe.execute()

        if count > self._max_attempts:
            self._client.zrem(redis_key, member)
            return False
        return True


def build_throttle(
    *, backend: str, redis_url: str, max_attempts: int, window_seconds: int
) -> Throttle:
    """Instantiate the configured throttle backend, preferring Redis when reachable."""
    if backend == "redis" and redis_url:
        try:
            client = redis.from_url(redis_url)
            client.ping()
        except redis.RedisError as exc:
            logger.warning("redis throttle unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("throttle configured for redis backend at %s", redis_url)
            return RedisAttemptThrottle(
                client, max_attempts=max_attempts, window_seconds=window_seconds
            )

    logger.info("throttle using in-memory backend")
    return AttemptThrottle(max_attempts=max_attempts, window_seconds=window_seconds)
