"""Redis client and tenant-scoped result caching.

One shared `redis.asyncio` client serves the report cache, the token
revocation list and the rate limiter.

Cached entries are keyed

    t:{tenant}:{prefix}:{function}:{md5 of keyword arguments}

with the tenant taken from the request context, so two tenants asking the
same question never share an entry and a tenant's entries can be dropped
with one pattern.
"""

import functools
import hashlib
import json
import logging
from datetime import date, datetime
from typing import Callable, Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.config import settings
from stampcard.tenancy import _tenant_ctx

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None

_KEYABLE = (int, str, bool, float, type(None))
_PENDING_KEY = "pending_cache_invalidations"


async def get_redis() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Called from the app lifespan and the CLI on exit."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def cache_key(*args, **kwargs) -> str:
    """Stable digest of the arguments; keyword order does not matter."""
    if not args and not kwargs:
        return "default"
    payload = json.dumps({"args": args, "kwargs": kwargs}, sort_keys=True)
    return hashlib.md5(payload.encode()).hexdigest()


def _scoped(key: str) -> str:
    tenant = _tenant_ctx.get()
    return f"t:{tenant}:{key}" if tenant else key


def _keyable_kwargs(kwargs: dict) -> dict:
    """Plain scalars and dates take part in the key; sessions and ORM objects do not."""
    keyable = {}
    for name, value in kwargs.items():
        if name.startswith("_"):
            continue
        if isinstance(value, _KEYABLE):
            keyable[name] = value
        elif isinstance(value, (date, datetime)):
            keyable[name] = value.isoformat()
    return keyable


def cached(ttl: int = 60, prefix: str = "cache"):
    """Cache a coroutine's JSON-serialisable result in Redis for `ttl` seconds.

    Pass the arguments that distinguish results as keywords. With caching
    disabled, or Redis unreachable, the coroutine simply runs.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not settings.cache_enabled:
                return await func(*args, **kwargs)

            key = _scoped(f"{prefix}:{func.__name__}:{cache_key(**_keyable_kwargs(kwargs))}")

            try:
                redis_client = await get_redis()
                hit = await redis_client.get(key)
            except redis.RedisError as e:
                logger.warning(f"Cache read failed for {key}, computing directly: {e}")
                return await func(*args, **kwargs)

            if hit is not None:
                logger.debug(f"Cache HIT: {key}")
                return json.loads(hit)

            logger.debug(f"Cache MISS: {key}")
            result = await func(*args, **kwargs)
            payload = result.model_dump(mode="json") if hasattr(result, "model_dump") else result

            try:
                await redis_client.setex(key, ttl, json.dumps(payload))
            except redis.RedisError as e:
                logger.warning(f"Cache write failed for {key}: {e}")
            return result

        return wrapper

    return decorator


async def _delete_matching(scoped_pattern: str):
    try:
        redis_client = await get_redis()
        keys = [key async for key in redis_client.scan_iter(match=scoped_pattern)]
        if keys:
            await redis_client.delete(*keys)
            logger.info(f"Invalidated {len(keys)} cache keys matching {scoped_pattern}")
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate {scoped_pattern}: {e}")


def invalidate_after_commit(db: AsyncSession, pattern: str):
    """Queue an invalidation for the current tenant until `db` commits.

    Entries dropped earlier could be rebuilt from the uncommitted state by a
    concurrent reader. `get_db` runs the queue after a successful commit and
    discards it on rollback.
    """
    if not settings.cache_enabled:
        return
    db.info.setdefault(_PENDING_KEY, set()).add(_scoped(pattern))


async def run_pending_invalidations(db: AsyncSession):
    for scoped_pattern in sorted(db.info.pop(_PENDING_KEY, set())):
        await _delete_matching(scoped_pattern)


def discard_pending_invalidations(db: AsyncSession):
    db.info.pop(_PENDING_KEY, None)
