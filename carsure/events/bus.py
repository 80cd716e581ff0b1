"""In-process event bus for appointment lifecycle events.

Services ``emit`` a SystemEvent after booking, moving or cancelling an
appointment; a single worker task hands each event to every subscriber
off the request path. Subscribers run concurrently and a failing one is
logged without affecting the rest.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from carsure.schemas.events import SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


class EventBus:
    """Queue plus one background worker fanning events out to subscribers."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    @property
    def handlers(self) -> list[EventHandler]:
        return list(self._handlers)

    def subscribe(self, handler: EventHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)
            logger.info("Event subscriber registered: %s", getattr(handler, "__name__", handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def emit(self, event: SystemEvent) -> None:
        """Queue ``event``; starts the worker lazily outside the app lifespan."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())
        await self._queue.put(event)
        logger.debug("Event queued: %s (appointment=%s)", event.event_type.value, event.appointment_id)

    async def _run(self) -> None:
        queue = self._queue
        if queue is None:
            return
        while True:
            event = await queue.get()
            try:
                await self._deliver(event)
            except Exception:
                logger.exception("Event delivery failed: %s", event.event_type.value)
            finally:
                queue.task_done()

    async def _deliver(self, event: SystemEvent) -> None:
        handlers = list(self._handlers)
        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Subscriber %s failed on %s: %s",
                    getattr(handler, "__name__", handler),
                    event.event_type.value,
                    result,
                )

    async def start(self) -> None:
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())
        logger.info("Event bus started with %d subscribers", len(self._handlers))

    async def stop(self) -> None:
        """Deliver what is already queued, then stop the worker."""
        worker, queue = self._worker, self._queue
        if worker is not None and not worker.done():
            if queue is not None:
                await queue.join()
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None
        logger.info("Event bus stopped")


# Module-level singleton and the functions callers import
event_bus = EventBus()

emit = event_bus.emit
subscribe = event_bus.subscribe
unsubscribe = event_bus.unsubscribe
start_event_system = event_bus.start
stop_event_system = event_bus.stop
