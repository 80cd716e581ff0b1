"""Per-seller booking throttle on a Redis fixed window.

Each seller gets ``create_rate_limit`` bookings per ``create_rate_window``
seconds, counted with INCR on a key that expires with the window. The
check runs before the booking touches Postgres. When Redis is down the
throttle is skipped rather than blocking bookings.
"""

from __future__ import annotations

import logging
import uuid

from redis.exceptions import RedisError

from carsure.config import settings
from carsure.db.engine import redis_client
from carsure.errors import RateLimited

logger = logging.getLogger(__name__)


def booking_key(seller_id: uuid.UUID) -> str:
    return f"rate:{seller_id}:rdv_create"


class RateLimiter:
    """Fixed-window counter: INCR, EXPIRE on the first hit, TTL when over."""

    def __init__(self, redis: object) -> None:
        self._redis = redis

    async def check(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """Count one hit on ``key``; returns ``(allowed, retry_after_seconds)``."""
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, window)
            if count <= limit:
                return True, 0
            ttl = await self._redis.ttl(key)
        except RedisError:
            logger.exception("Rate limiter unavailable for %s; allowing", key)
            return True, 0
        return False, max(ttl, 1)

    async def enforce_booking(self, seller_id: uuid.UUID) -> None:
        """Raise RateLimited when the seller exhausted the booking window."""
        allowed, retry_after = await self.check(
            booking_key(seller_id),
            limit=settings.security.create_rate_limit,
            window=settings.security.create_rate_window,
        )
        if not allowed:
            logger.warning("Seller %s throttled on booking for %ds", seller_id, retry_after)
            raise RateLimited(retry_after)


# Module-level singleton
rate_limiter = RateLimiter(redis_client)
