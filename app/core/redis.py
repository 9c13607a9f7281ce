"""
Redis Connection
Shared connection pool for the RQ dispatcher and the worker script.
The local worker pool never touches Redis.
"""

import logging
from functools import lru_cache

from redis import ConnectionPool, Redis
from redis.exceptions import ConnectionError, TimeoutError

from app.core.config import settings

logger = logging.getLogger(__name__)


class Queues:
    """RQ queue names."""
    GENERATION = "generation"


def mask_url(url: str) -> str:
    """redis://:password@host:port -> redis://***@host:port"""
    if "@" in url:
        return f"redis://***@{url.rsplit('@', 1)[-1]}"
    return url


@lru_cache()
def get_redis() -> Redis:
    """Pooled Redis client for REDIS_URL (RQ needs bytes, so no decoding)."""
    pool = ConnectionPool.from_url(
        settings.REDIS_URL,
        max_connections=10,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
    )
    logger.info(f"Created Redis connection pool for {mask_url(settings.REDIS_URL)}")
    return Redis(connection_pool=pool)


def redis_health_check() -> dict:
    """Ping Redis; never raises."""
    url = mask_url(settings.REDIS_URL)
    try:
        client = get_redis()
        client.ping()
        version = client.info("server").get("redis_version", "unknown")
    except (ConnectionError, TimeoutError) as e:
        logger.error(f"Redis health check failed: {e}")
        return {"connected": False, "error": str(e), "url": url}
    return {"connected": True, "redis_version": version, "url": url}


__all__ = ["Queues", "get_redis", "mask_url", "redis_health_check"]
