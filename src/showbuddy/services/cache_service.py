"""
Cache service for seat maps and showing details
"""
from typing import Optional, Dict, Any
from showbuddy.core.redis import redis_client
from showbuddy.core.config import settings
import logging

logger = logging.getLogger(__name__)


class CacheService:
    """Cache key layout and invalidation"""

    SHOWING_KEY = "showing:{showing_id}"
    SHOWING_SEATS_KEY = "showing:{showing_id}:seats:v{generation}"
    SEATS_GENERATION_KEY = "showing:{showing_id}:seats:gen"

    @staticmethod
    async def get_showing(showing_id: int) -> Optional[Dict[str, Any]]:
        key = CacheService.SHOWING_KEY.format(showing_id=showing_id)
        return await redis_client.get(key)

    @staticmethod
    async def set_showing(showing_id: int, data: Dict[str, Any]) -> bool:
        """Showings are immutable, so they get the long TTL"""
        key = CacheService.SHOWING_KEY.format(showing_id=showing_id)
        return await redis_client.set(key, data, ttl=settings.REDIS_CACHE_TTL)

    @staticmethod
    async def seat_generation(showing_id: int) -> int:
        """Current generation of a showing's seat snapshot; bumped on every mutation"""
        key = CacheService.SEATS_GENERATION_KEY.format(showing_id=showing_id)
        return int(await redis_client.get(key) or 0)

    @staticmethod
    async def get_seat_rows(showing_id: int, generation: int) -> Optional[list]:
        """Get cached raw seat rows (state + hold expiry, no hold tokens)"""
        key = CacheService.SHOWING_SEATS_KEY.format(showing_id=showing_id, generation=generation)
        cached = await redis_client.get(key)
        if cached is not None:
            logger.debug(f"Cache HIT: {key}")
        return cached

    @staticmethod
    async def set_seat_rows(showing_id: int, generation: int, rows: list) -> bool:
        """
        Cache seat rows (short TTL due to high volatility).

        ``generation`` must be read before the rows were loaded. A mutation
        that commits in between bumps the generation, so the rows land under
        a key no reader asks for.
        """
        key = CacheService.SHOWING_SEATS_KEY.format(showing_id=showing_id, generation=generation)
        return await redis_client.set(key, rows, ttl=settings.REDIS_SEATS_TTL)

    @staticmethod
    async def invalidate_seats(showing_id: int) -> bool:
        """Move readers off the current seat snapshot after any inventory mutation"""
        key = CacheService.SEATS_GENERATION_KEY.format(showing_id=showing_id)
        logger.debug(f"Invalidating seat cache for showing {showing_id}")
        # Outlives every snapshot so a reset counter never revives an old key
        return await redis_client.incr(key, ttl=settings.REDIS_CACHE_TTL) is not None
