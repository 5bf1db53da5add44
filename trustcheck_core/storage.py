from __future__ import annotations

import logging

import redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "trustcheck"


def connect_redis(url: str | None) -> redis.Redis | None:
    """Open the optional durable store.

    Returns None when unconfigured or unreachable; callers then run on their
    in-memory stores for the life of the process.
    """
    if not url:
        return None
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )
        client.ping()
    except redis.RedisError as e:
        logger.warning("Redis unavailable, using in-memory storage only: %s", e)
        return None
    logger.info("Redis connection established")
    return client
