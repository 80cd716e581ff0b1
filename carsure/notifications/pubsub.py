"""Redis pub/sub bridge for live pushes.

A push is published on one Redis channel; every worker process runs a
listener that hands messages to its own ConnectionRegistry, so a socket
held by any worker receives it. If Redis is unreachable the publisher
falls back to delivering to the local registry only.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from redis.exceptions import RedisError

from carsure.db.engine import redis_client
from carsure.notifications.registry import ConnectionRegistry, connection_registry

logger = logging.getLogger(__name__)

CHANNEL = "carsure:notifications"
PUSH_EVENT = "new_notification"


class NotificationPublisher:
    """Publishes live pushes and relays them to local sockets."""

    def __init__(
        self,
        redis: Any,
        registry: ConnectionRegistry,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
    ) -> None:
        self._redis = redis
        self._registry = registry
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay
        self._listener: asyncio.Task[None] | None = None

    async def publish(self, recipient_id: str, payload: dict[str, Any]) -> None:
        message = json.dumps({"recipient_id": recipient_id, "payload": payload})
        try:
            await self._redis.publish(CHANNEL, message)
        except RedisError:
            logger.warning("Redis publish failed; delivering to local sockets only")
            await self._registry.send(recipient_id, PUSH_EVENT, payload)

    async def handle_message(self, raw: str) -> int:
        """Deliver one pub/sub message to the local registry."""
        try:
            message = json.loads(raw)
            recipient_id = str(message["recipient_id"])
            payload = message["payload"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring malformed push message: %.200s", raw)
            return 0
        return await self._registry.send(recipient_id, PUSH_EVENT, payload)

    async def _listen(self) -> None:
        """Relay the channel to local sockets, resubscribing whenever Redis drops."""
        delay = self._retry_delay
        while True:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(CHANNEL)
                logger.info("Subscribed to %s", CHANNEL)
                delay = self._retry_delay
                while True:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if message is not None and message.get("type") == "message":
                        await self.handle_message(message["data"])
            except RedisError:
                logger.warning("Push listener lost Redis; resubscribing in %.1fs", delay, exc_info=True)
            finally:
                await self._close(pubsub)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._max_retry_delay)

    @staticmethod
    async def _close(pubsub: Any) -> None:
        try:
            await pubsub.aclose()
        except RedisError:
            logger.debug("Ignoring error while closing a dead pub/sub connection")

    async def start(self) -> None:
        """Start the background listener. Call during FastAPI lifespan startup."""
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        if self._listener is not None and not self._listener.done():
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
        self._listener = None
        logger.info("Push listener stopped")


# Module-level singleton
notification_publisher = NotificationPublisher(redis_client, connection_registry)
