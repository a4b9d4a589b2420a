"""Redis client shared by the matcher lock and the change feed.

The pool is built on first use so that importing the app (tests, Alembic)
never needs a reachable Redis.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis

from transferhub.config import settings

_pool: Optional[aioredis.ConnectionPool] = None


async def get_redis() -> aioredis.Redis:
    global _pool
    if _pool is None:
        _pool = aioredis.ConnectionPool.from_url(
            settings.redis_url, decode_responses=True
        )
    return aioredis.Redis(connection_pool=_pool)


async def close_redis() -> None:
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None
