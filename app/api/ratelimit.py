"""Rate limiting dependency for FastAPI routes.

A dependency rather than middleware, so each route picks its own
bucket size and /health, /ready and /metrics stay unlimited:

  POST /api/credentials/issue        ISSUE_LIMIT   (chain writes cost gas)
  POST /api/credentials/batch-issue  BATCH_LIMIT
  POST /api/ipfs/upload              UPLOAD_LIMIT  (bytes go to a pinning node)
  /api/verify/*                      VERIFY_LIMIT  (public, read-only)

Keys use the most specific identity available: the token subject when
a bearer token is present, the client IP otherwise.

X-RateLimit-* headers are set on every limited response, not just on
429s, so clients can self-throttle.
"""

from __future__ import annotations

import logging

import jwt as pyjwt
from fastapi import HTTPException, Request, status

from app.core.metrics import RATE_LIMIT_HITS
from app.db.redis import redis_pool
from app.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    RedisRateLimiter,
)

logger = logging.getLogger(__name__)

_rate_limiter: RateLimiter
if redis_pool is not None:
    _rate_limiter = RedisRateLimiter(redis_pool)
else:
    _rate_limiter = InMemoryRateLimiter()


_DEFAULT_CONFIG = RateLimitConfig()
ISSUE_LIMIT = RateLimitConfig(capacity=30, refill_rate=0.5)
BATCH_LIMIT = RateLimitConfig(capacity=5, refill_rate=0.05)
UPLOAD_LIMIT = RateLimitConfig(capacity=20, refill_rate=0.2)
VERIFY_LIMIT = RateLimitConfig(capacity=100, refill_rate=100 / 900)


def require_rate_limit(config: RateLimitConfig = _DEFAULT_CONFIG):
    """Dependency factory: enforce rate limits on a route.

        @router.post("/issue", dependencies=[Depends(require_rate_limit(ISSUE_LIMIT))])
    """

    async def _check(request: Request) -> None:
        key = _build_key(request)
        result: RateLimitResult = await _rate_limiter.check(key, config)

        request.state.rate_limit_headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
        }

        if not result.allowed:
            RATE_LIMIT_HITS.labels(
                key_type="user" if key.startswith("user:") else "ip"
            ).inc()
            logger.warning("Rate limit exceeded key=%s", key)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please try again later",
                headers={
                    "Retry-After": str(int(result.retry_after) + 1),
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return _check


def _build_key(request: Request) -> str:
    """Build a rate-limit key from the best available identity.

    The token is decoded without signature verification: only 'sub' is
    needed for keying, and a forged token merely gets its own bucket.
    Authentication itself happens in require_user.
    """
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            claims = pyjwt.decode(auth_header[7:], options={"verify_signature": False})
        except pyjwt.InvalidTokenError:
            claims = {}
        sub = claims.get("sub")
        if sub:
            return f"user:{sub}"

    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"
