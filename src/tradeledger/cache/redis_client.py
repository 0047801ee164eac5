# src/tradeledger/cache/redis_client.py
from __future__ import annotations

import logging
from typing import Optional

import redis

from tradeledger.core.errors import CacheUnavailable

logger = logging.getLogger(__name__)


def create_redis(url: Optional[str], *, socket_timeout_sec: float = 2.0) -> Optional[redis.Redis]:
    """
    Redis client for the cache mirror, or None when no URL is configured.

    Raises CacheUnavailable when the server does not answer PING; the caller
    decides whether to run without the cache.
    """
    if not url:
        logger.info("[CACHE] REDIS_URL not set, cache mirror disabled")
        return None

    client = redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout_sec,
        socket_connect_timeout=socket_timeout_sec,
    )
    try:
        client.ping()
    except redis.RedisError as e:
        raise CacheUnavailable(f"redis ping failed: {e}", operation="ping") from e

    logger.info("[CACHE] connected to redis")
    return client
