"""Redis store for caching and distributed locks.

Handles:
- Caching with TTL policies
- Distributed locks (one feed sync per merchant at a time)

TTL policies:
- Catalog title snapshot: ~5 minutes, dropped on master catalog writes
- Merchant sync locks: ~5 minutes

Redis is optional for correctness: callers treat RuntimeError (not
initialized) and RedisError (unreachable) as "no cache / no lock".
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from app.settings import get_settings

# TTL constants (in seconds)
TTL_CATALOG_TITLES = 300  # 5 minutes
TTL_SYNC_LOCK = 300  # 5 minutes

# Key prefixes
PREFIX_CATALOG = "catalog:"
PREFIX_LOCK = "lock:"

KEY_CATALOG_TITLES = f"{PREFIX_CATALOG}active_titles"

# Redis client (initialized on startup)
_redis: redis.Redis | None = None
logger = logging.getLogger("uvicorn.error")


async def init_redis() -> None:
    """Initialize Redis connection."""
    global _redis
    settings = get_settings()
    _redis = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    # Validate connectivity early (especially for `rediss://` in production).
    await _redis.ping()
    logger.info("Redis connected")


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def _get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


# ============================================================
# Generic cache operations
# ============================================================


async def cache_get(key: str) -> str | None:
    """Get value from cache.

    Args:
        key: Cache key.

    Returns:
        Cached value or None if not found.
    """
    return await _get_redis().get(key)


async def cache_set(key: str, value: str, ttl: int) -> None:
    """Set value in cache with TTL."""
    await _get_redis().setex(key, ttl, value)


async def cache_delete(key: str) -> None:
    await _get_redis().delete(key)


async def cache_get_json(key: str) -> Any | None:
    """Get JSON value from cache (None if not found)."""
    value = await cache_get(key)
    if value:
        return json.loads(value)
    return None


async def cache_set_json(key: str, value: Any, ttl: int) -> None:
    await cache_set(key, json.dumps(value), ttl)


# ============================================================
# Catalog title snapshot (Title Similarity Scorer)
# ============================================================


async def get_catalog_titles_cache() -> list[list[Any]] | None:
    """Get cached [[product_id, title], ...] snapshot of active master products."""
    return await cache_get_json(KEY_CATALOG_TITLES)


async def set_catalog_titles_cache(rows: list[list[Any]], ttl: int = TTL_CATALOG_TITLES) -> None:
    await cache_set_json(KEY_CATALOG_TITLES, rows, ttl)


async def invalidate_catalog_titles_cache() -> None:
    """Drop the title snapshot after a master product is created or changed."""
    await cache_delete(KEY_CATALOG_TITLES)


# ============================================================
# Distributed locks
# ============================================================


async def acquire_lock(key: str, ttl: int = TTL_SYNC_LOCK) -> bool:
    """Acquire a distributed lock.

    Args:
        key: Lock key (e.g., "sync:merchant:12").
        ttl: Lock timeout in seconds.

    Returns:
        True if lock acquired, False if already locked.
    """
    lock_key = f"{PREFIX_LOCK}{key}"
    # SET NX (only if not exists) with TTL
    result = await _get_redis().set(lock_key, "1", nx=True, ex=ttl)
    return result is not None


async def release_lock(key: str) -> None:
    await cache_delete(f"{PREFIX_LOCK}{key}")


async def is_locked(key: str) -> bool:
    result = await cache_get(f"{PREFIX_LOCK}{key}")
    return result is not None
