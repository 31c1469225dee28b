"""Redis client for idempotency keys on item registration.

Usage:
    from escrow_market.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from escrow_market.config import get_settings
from escrow_market.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

IDEMPOTENCY_PREFIX = "market:idempotency:"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def claim_idempotency(redis: aioredis.Redis, key: str, caller: str) -> bool:
    """Atomically claim an idempotency key for a caller.

    Returns True if the key was free (first use), False if it was already taken.
    Keys are scoped per caller so two principals cannot collide.
    """
    settings = get_settings()
    claimed = await redis.set(
        f"{IDEMPOTENCY_PREFIX}{caller}:{key}",
        "1",
        ex=settings.redis_idempotency_ttl_seconds,
        nx=True,
    )
    return bool(claimed)


async def release_idempotency(redis: aioredis.Redis, key: str, caller: str) -> None:
    """Free a claimed key so a failed registration can be retried."""
    await redis.delete(f"{IDEMPOTENCY_PREFIX}{caller}:{key}")
