"""Redis async client, used by the distributed ride locks and the expiry sweeper.

The connection pool is created on first use, so processes running with
in-memory locks never open one.
"""

from typing import Optional

import redis.asyncio as aioredis

from ride_service.config import settings

_pool: Optional[aioredis.ConnectionPool] = None


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    global _pool
    if _pool is None:
        _pool = aioredis.ConnectionPool.from_url(
            settings.redis_url, decode_responses=True
        )
    return aioredis.Redis(connection_pool=_pool)
