"""
config/redis_client.py
Async Redis client for caching, the JWT deny-list, rate limiting,
and idempotency-key claims.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from tenacity import before_sleep_log, retry, stop_after_attempt, wait_exponential

from config.settings import settings

logger = logging.getLogger(__name__)

IDEMPOTENCY_PENDING = "__pending__"

# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Redis Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis patterns."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(key)
        if value is not None:
            return json.loads(value)
        return None

    async def set(self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL) -> None:
        await self.client.setex(key, ttl, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    # ── Idempotency Keys ─────────────────────────────────────
    async def claim_idempotency_key(self, key: str) -> Optional[str]:
        """
        Atomically claim an idempotency key using SET NX.
        Returns None when the claim succeeded, otherwise the value already
        stored (IDEMPOTENCY_PENDING while the first request is in flight,
        or the id of the resource it created).
        """
        claimed = await self.client.set(
            key,
            IDEMPOTENCY_PENDING,
            ex=settings.IDEMPOTENCY_TTL_SECONDS,
            nx=True,
        )
        if claimed:
            return None
        return await self.client.get(key) or IDEMPOTENCY_PENDING

    async def complete_idempotency_key(self, key: str, resource_id: str) -> None:
        await self.client.set(key, resource_id, ex=settings.IDEMPOTENCY_TTL_SECONDS)

    async def release_idempotency_key(self, key: str) -> None:
        await self.client.delete(key)

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(f"jwt_revoked:{jti}", max(ttl_seconds, 1), "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter. The window starts with the first hit.
        Returns True if request is allowed, False if rate limited.
        """
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        results = await pipe.execute()
        return results[0] <= limit
