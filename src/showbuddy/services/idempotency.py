"""
Idempotency keys for hold creation
Handles client retries and double submits
"""
from typing import Optional, Any
import hashlib
import json
import time
from showbuddy.core.config import settings
from showbuddy.core.redis import redis_client
import logging

logger = logging.getLogger(__name__)


class IdempotencyService:
    """
    Remembers the response of a hold request so a retried request returns
    the same hold instead of creating (or failing on) a second one.

    Without Redis every request is treated as new; the seat inventory still
    rejects a second hold on the same seats.
    """

    def __init__(self):
        self.redis = redis_client
        self.ttl = settings.IDEMPOTENCY_TTL

    def generate_key(self, user_id: str, operation: str, params: dict) -> str:
        """
        Generate idempotency key from operation parameters

        Args:
            user_id: User performing the operation
            operation: Type of operation (e.g. 'start_hold')
            params: Operation parameters

        Returns:
            Namespaced SHA256 hash of the combined parameters
        """
        key_data = {
            "user_id": user_id,
            "operation": operation,
            "params": sorted(params.items()),
        }

        key_string = json.dumps(key_data, sort_keys=True, default=str)
        hash_key = hashlib.sha256(key_string.encode()).hexdigest()

        return f"idempotency:{operation}:{hash_key}"

    def client_key(self, user_id: str, operation: str, header_value: str) -> str:
        """Scope a client supplied X-Idempotency-Key to the caller"""
        return self.generate_key(user_id, operation, {"client_key": header_value})

    async def check_operation(self, idempotency_key: str) -> Optional[dict]:
        """
        Returns:
            - None if the operation is new
            - The stored response if it already completed
        """
        result = await self.redis.get(idempotency_key)

        if result:
            logger.info(f"Idempotent replay: {idempotency_key}")

        return result

    async def store_result(self, idempotency_key: str, result: Any):
        await self.redis.set(idempotency_key, result, ttl=self.ttl)

    async def lock_operation(self, idempotency_key: str, ttl: int = 30) -> bool:
        """
        Acquire the in-progress lock for a key.

        Returns:
            True if acquired (or no Redis to lock with), False if another
            request with the same key is running
        """
        acquired = await self.redis.set_if_absent(f"{idempotency_key}:lock", str(time.time()), ttl)
        return acquired is not False

    async def release_lock(self, idempotency_key: str):
        await self.redis.delete(f"{idempotency_key}:lock")


# Global instance
idempotency_service = IdempotencyService()
