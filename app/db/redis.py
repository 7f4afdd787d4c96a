"""Optional Redis connection.

Redis holds one thing here: rate-limit buckets shared by every API
replica.  Credentials, verdicts and documents are never stored in it;
the registry and the content store are the only persistence.

When REDIS_URL is unset, ``redis_pool`` is None and the rate limiter
falls back to per-process buckets.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Check the connection on startup, release the pool on shutdown.

    An unreachable Redis is logged, not fatal: the app still starts and
    rate limiting degrades to the Redis errors surfacing per request.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, rate limits are per process")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected")
    except Exception:
        logger.exception("Redis connection failed on startup")

    try:
        yield
    finally:
        await redis_pool.aclose()
        logger.info("Redis connection pool closed")
