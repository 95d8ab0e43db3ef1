"""
Redis-backed cache for collaborator lookups and per-user rate limits.

Every call degrades to a miss when Redis is not connected, so the
messaging core never depends on the cache being up.
"""
import json
from typing import Any, Optional, Dict
from . import core
import logging

logger = logging.getLogger(__name__)


class CacheManager:

    def __init__(self):
        self.default_ttl = 3600  # 1 hour default TTL

    def _make_key(self, key: str, prefix: str = "") -> str:
        if prefix:
            return f"{prefix}:{key}"
        return key

    async def set(self, key: str, value: Any, ttl: int = None, prefix: str = "") -> bool:
        """Set cache value with TTL"""
        if not core.REDIS:
            return False

        cache_key = self._make_key(key, prefix)
        ttl = ttl or self.default_ttl

        try:
            if isinstance(value, (dict, list)):
                value = json.dumps(value)
            await core.REDIS.setex(cache_key, ttl, value)
            return True
        except Exception as e:
            logger.error(f"Cache set failed for key {cache_key}: {str(e)}")
            return False

    async def get(self, key: str, prefix: str = "") -> Optional[Any]:
        """Get cache value"""
        if not core.REDIS:
            return None

        cache_key = self._make_key(key, prefix)

        try:
            value = await core.REDIS.get(cache_key)
            if value is None:
                return None
            try:
                return json.loads(value)
            except (json.JSONDecodeError, TypeError):
                return value.decode() if isinstance(value, bytes) else value
        except Exception as e:
            logger.error(f"Cache get failed for key {cache_key}: {str(e)}")
            return None

    async def increment(self, key: str, amount: int = 1, prefix: str = "") -> Optional[int]:
        """Increment cache value atomically"""
        if not core.REDIS:
            return None

        cache_key = self._make_key(key, prefix)

        try:
            return await core.REDIS.incrby(cache_key, amount)
        except Exception as e:
            logger.error(f"Cache increment failed for key {cache_key}: {str(e)}")
            return None


# Global cache manager instance
cache = CacheManager()


# User summary cache, filled by crud.get_user_summaries
async def cache_user_summary(user_id, summary: Dict, ttl: int = 1800):
    """Cache user summary for 30 minutes"""
    return await cache.set(str(user_id), summary, ttl, "user_summary")


async def get_cached_user_summary(user_id) -> Optional[Dict]:
    return await cache.get(str(user_id), "user_summary")


async def rate_limit_reached(user_id, action: str, limit: int = 100) -> bool:
    """Check if user has used up the window, without counting this call"""
    current = await cache.get(f"{user_id}:{action}", "rate")
    return current is not None and int(current) >= limit


async def record_action(user_id, action: str, window: int = 3600):
    """Count an accepted action; the first one in a window starts its TTL"""
    key = f"{user_id}:{action}"

    if await cache.get(key, "rate") is None:
        await cache.set(key, 1, window, "rate")
        return

    await cache.increment(key, 1, "rate")
