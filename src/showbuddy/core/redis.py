"""
Redis client wrapper.

Every operation degrades to a cache miss / no-op when Redis is down, so the
booking flow never depends on Redis being reachable. Seat state lives in the
database; Redis only holds derived data (seat-map snapshots, idempotent
responses).
"""
import redis.asyncio as redis
from showbuddy.core.config import settings
import json
from typing import Optional, Any
from enum import Enum
import logging

logger = logging.getLogger(__name__)


class EnumEncoder(json.JSONEncoder):
    """JSON encoder that writes enum values, not their repr"""
    def default(self, obj):
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class RedisClient:
    """Async Redis client wrapper"""

    def __init__(self):
        self.redis: Optional[redis.Redis] = None

    @property
    def available(self) -> bool:
        return self.redis is not None

    async def connect(self, url: str = None):
        """Connect to Redis; on failure run without it"""
        try:
            self.redis = redis.from_url(
                url or settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                max_connections=50
            )
            await self.redis.ping()
            logger.info("Redis connected")
        except Exception as e:
            logger.warning(f"Redis unavailable, continuing without cache: {e}")
            self.redis = None

    async def close(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis connection closed")

    async def get(self, key: str) -> Optional[Any]:
        """Get a JSON value"""
        if not self.redis:
            return None

        try:
            value = await self.redis.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.error(f"Redis GET error for key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = None) -> bool:
        """Set a JSON value with TTL"""
        if not self.redis:
            return False

        try:
            ttl = ttl or settings.REDIS_CACHE_TTL
            serialized = json.dumps(value, cls=EnumEncoder, default=str)
            await self.redis.setex(key, ttl, serialized)
            return True
        except Exception as e:
            logger.error(f"Redis SET error for key {key}: {e}")
            return False

    async def set_if_absent(self, key: str, value: str, ttl: int) -> Optional[bool]:
        """
        SET NX with expiry.

        Returns None when Redis is not available so callers can tell
        "not acquired" apart from "no lock service".
        """
        if not self.redis:
            return None

        try:
            return bool(await self.redis.set(key, value, ex=ttl, nx=True))
        except Exception as e:
            logger.error(f"Redis SET NX error for key {key}: {e}")
            return None

    async def incr(self, key: str, ttl: int = None) -> Optional[int]:
        """INCR a counter and refresh its TTL"""
        if not self.redis:
            return None

        try:
            value = await self.redis.incr(key)
            if ttl:
                await self.redis.expire(key, ttl)
            return value
        except Exception as e:
            logger.error(f"Redis INCR error for key {key}: {e}")
            return None

    async def delete(self, *keys: str) -> bool:
        """Delete one or more keys"""
        if not self.redis:
            return False

        try:
            await self.redis.delete(*keys)
            return True
        except Exception as e:
            logger.error(f"Redis DELETE error: {e}")
            return False


# Global Redis client instance
redis_client = RedisClient()
