"""
Redis client and best-effort JSON cache helpers.

Cost results are cached by request key. Every cache operation swallows
and logs Redis failures: a cache outage must never fail a calculation,
it only makes it slower.

CHANGELOG:
- 2026-10-18: Add cache_get_json / cache_set_json for cost results
- 2026-10-18: Initial creation

TODO:
- None
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from meter_recon.config import get_settings

logger = logging.getLogger(__name__)


async def get_redis() -> redis.Redis:
    """Create an async Redis client for the configured REDIS_URL."""
    settings = get_settings()
    return redis.from_url(settings.REDIS_URL)


async def cache_get_json(key: str) -> Any | None:
    """Return the decoded JSON cached under *key*, or None on miss/failure."""
    try:
        client = await get_redis()
        try:
            raw = await client.get(key)
            if raw is not None:
                return json.loads(raw)
        finally:
            await client.aclose()
    except Exception:
        logger.warning("Redis cache read failed for %s", key, exc_info=True)
    return None


async def cache_set_json(key: str, value: Any, ttl_s: int | None = None) -> None:
    """Store *value* as JSON under *key* with a TTL (CACHE_TTL_S by default)."""
    try:
        ttl = ttl_s if ttl_s is not None else get_settings().CACHE_TTL_S
        client = await get_redis()
        try:
            await client.set(key, json.dumps(value, default=str), ex=ttl)
        finally:
            await client.aclose()
    except Exception:
        logger.warning("Redis cache write failed for %s", key, exc_info=True)
