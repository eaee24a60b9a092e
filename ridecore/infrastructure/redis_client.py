"""
Redis client shared by the API process and the offer sweeper.

The connection pool is built on first use, so importing the application
(tests, migrations, the seed script) never needs a reachable Redis.
"""

import logging
from typing import Optional

import redis.asyncio as aioredis

from ridecore.config import settings

logger = logging.getLogger(__name__)

_pool: Optional[aioredis.ConnectionPool] = None


def _connection_pool() -> aioredis.ConnectionPool:
    global _pool
    if _pool is None:
        _pool = aioredis.ConnectionPool.from_url(
            settings.redis_url, decode_responses=True
        )
    return _pool


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_connection_pool())


async def close_redis() -> None:
    """Drop pooled connections on shutdown."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None
        logger.info("Redis connection pool closed")
