"""Redis connection for short-lived bridge state.

Only pending registration tokens live here: they expire on their own after
a day and must be visible to every worker that might serve the
registration-continuation request. When REDIS_URL is unset, redis_pool is
None and the token store falls back to memory.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from keycloak_bridge.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=10,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify the connection on startup and close the pool on shutdown.

    A failed ping is logged and startup continues; token writes will then
    fail per request and surface in the logs.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured; registration tokens kept in memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
