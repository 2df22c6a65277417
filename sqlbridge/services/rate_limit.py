from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from threading import Lock
from typing import Protocol

import redis

from sqlbridge.core.redis_client import connect_redis


@dataclass(frozen=True)
class WindowHit:
    """Counter state of one key after a login attempt was recorded."""

    count: int
    limit: int
    retry_after_seconds: int

    @property
    def allowed(self) -> bool:
        return self.count <= self.limit


class RateLimiter(Protocol):
    def hit(self, key: str, *, limit: int, window_seconds: int) -> WindowHit:
        ...


class InMemoryRateLimiter:
    """Fixed-window counters kept in process memory, used when Redis is down."""

    def __init__(self, *, max_keys: int = 10_000):
        self._windows: dict[str, tuple[int, datetime]] = {}
        self._lock = Lock()
        self.max_keys = max_keys

    def _prune(self, now: datetime) -> None:
        expired = [key for key, (_, until) in self._windows.items() if until <= now]
        for key in expired:
            del self._windows[key]

    def hit(self, key: str, *, limit: int, window_seconds: int) -> WindowHit:
        now = datetime.now(timezone.utc)
        with self._lock:
            if len(self._windows) >= self.max_keys:
                self._prune(now)
            hits, window_end = self._windows.get(key, (0, now))
            if window_end <= now:
                hits = 0
                window_end = now + timedelta(seconds=max(int(window_seconds), 1))
            hits += 1
            self._windows[key] = (hits, window_end)
        retry_after = max(0, int((window_end - now).total_seconds()))
        return WindowHit(count=hits, limit=limit, retry_after_seconds=retry_after)


class RedisRateLimiter:
    def __init__(self, client: redis.Redis, *, prefix: str = "sqlbridge:throttle"):
        self.client = client
        self.prefix = prefix

    def hit(self, key: str, *, limit: int, window_seconds: int) -> WindowHit:
        window = int(max(window_seconds, 1))
        name = f"{self.prefix}:{key}"
        pipe = self.client.pipeline()
        pipe.incr(name)
        pipe.ttl(name)
        count, ttl = pipe.execute()
        if int(count) == 1 or int(ttl) < 0:
            self.client.expire(name, window)
            ttl = window
        return WindowHit(count=int(count), limit=limit, retry_after_seconds=int(ttl))


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    client = connect_redis("login limiter")
    if client is None:
        return InMemoryRateLimiter()
    return RedisRateLimiter(client)
