from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from threading import Lock
from typing import Any, Protocol

import redis

from sqlbridge.core.config import settings
from sqlbridge.core.redis_client import connect_redis

_LOG = logging.getLogger("sqlbridge.cache")


class ResponseCache(Protocol):
    def get(self, table: str, key: str) -> Any | None:
        ...

    def set(self, table: str, key: str, value: Any, *, ttl_seconds: int) -> None:
        ...

    def invalidate_table(self, table: str) -> None:
        ...

    def clear(self) -> None:
        ...


class NullResponseCache:
    def get(self, table: str, key: str) -> Any | None:
        return None

    def set(self, table: str, key: str, value: Any, *, ttl_seconds: int) -> None:
        return None

    def invalidate_table(self, table: str) -> None:
        return None

    def clear(self) -> None:
        return None


class InMemoryResponseCache:
    def __init__(self):
        self._data: dict[str, dict[str, tuple[Any, datetime]]] = {}
        self._lock = Lock()

    def get(self, table: str, key: str) -> Any | None:
        now = datetime.now(timezone.utc)
        with self._lock:
            entry = self._data.get(table, {}).get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= now:
                self._data[table].pop(key, None)
                return None
            return value

    def set(self, table: str, key: str, value: Any, *, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=max(int(ttl_seconds), 1))
        with self._lock:
            self._data.setdefault(table, {})[key] = (value, expires_at)

    def invalidate_table(self, table: str) -> None:
        with self._lock:
            self._data.pop(table, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisResponseCache:
    def __init__(self, client: redis.Redis, *, prefix: str = "sqlbridge:rows"):
        self.client = client
        self.prefix = prefix

    def _key(self, table: str, key: str) -> str:
        return f"{self.prefix}:{table}:{key}"

    def _delete_matching(self, pattern: str) -> None:
        try:
            keys = list(self.client.scan_iter(match=pattern, count=500))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError:
            # Entries that survive expire on their own TTL.
            _LOG.warning("Redis cache invalidation failed for pattern=%s", pattern, exc_info=True)

    def get(self, table: str, key: str) -> Any | None:
        try:
            raw = self.client.get(self._key(table, key))
        except redis.RedisError:
            _LOG.warning("Redis cache read failed for table=%s", table, exc_info=True)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, table: str, key: str, value: Any, *, ttl_seconds: int) -> None:
        try:
            self.client.set(self._key(table, key), json.dumps(value), ex=max(int(ttl_seconds), 1))
        except redis.RedisError:
            _LOG.warning("Redis cache write failed for table=%s", table, exc_info=True)

    def invalidate_table(self, table: str) -> None:
        self._delete_matching(f"{self.prefix}:{table}:*")

    def clear(self) -> None:
        self._delete_matching(f"{self.prefix}:*")


@lru_cache(maxsize=1)
def get_response_cache() -> ResponseCache:
    if not settings.RESPONSE_CACHE_ENABLED:
        return NullResponseCache()
    backend = str(settings.RESPONSE_CACHE_BACKEND or "").strip().lower()
    if backend == "redis":
        client = connect_redis("response cache")
        if client is not None:
            return RedisResponseCache(client)
    return InMemoryResponseCache()
