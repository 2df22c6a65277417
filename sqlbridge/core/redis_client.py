from __future__ import annotations

import logging

import redis

from sqlbridge.core.config import settings

_LOG = logging.getLogger("sqlbridge.redis")


def connect_redis(purpose: str) -> redis.Redis | None:
    """Return a live client for ``REDIS_URL`` or ``None`` when it cannot be reached.

    Callers fall back to their in-process implementation on ``None``.
    """
    client = redis.Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=0.4,
        socket_connect_timeout=0.4,
    )
    try:
        client.ping()
    except redis.RedisError:
        _LOG.warning("Redis unavailable for %s; using in-memory %s", purpose, purpose, exc_info=True)
        return None
    return client
