"""Connection registry — which live sockets belong to which account.

A room per account id. Sockets join on ``join_user`` and leave on
``leave_user`` or disconnect. Anything that needs to push to an account
goes through ``ConnectionRegistry.send``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """The part of a WebSocket the registry needs."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...


class ConnectionRegistry:
    """Maps an account id to the set of its live connections."""

    def __init__(self) -> None:
        self._rooms: dict[str, set[Connection]] = {}

    def join(self, account_id: str, connection: Connection) -> None:
        self._rooms.setdefault(account_id, set()).add(connection)
        logger.debug("Joined room %s (%d connections)", account_id, len(self._rooms[account_id]))

    def leave(self, account_id: str, connection: Connection) -> None:
        room = self._rooms.get(account_id)
        if room is None:
            return
        room.discard(connection)
        if not room:
            del self._rooms[account_id]

    def disconnect(self, connection: Connection) -> None:
        """Drop a connection from every room it joined."""
        for account_id in [k for k, room in self._rooms.items() if connection in room]:
            self.leave(account_id, connection)

    def connections(self, account_id: str) -> list[Connection]:
        return list(self._rooms.get(account_id, ()))

    def is_online(self, account_id: str) -> bool:
        return bool(self._rooms.get(account_id))

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    async def send(self, account_id: str, event: str, payload: dict[str, Any]) -> int:
        """Push ``{"event": event, "data": payload}`` to every connection of an account.

        Best effort: a connection that fails to receive is dropped from the
        registry. Returns the number of successful deliveries.
        """
        delivered = 0
        for connection in self.connections(account_id):
            try:
                await connection.send_json({"event": event, "data": payload})
                delivered += 1
            except Exception:
                logger.warning("Dropping dead connection in room %s", account_id)
                self.disconnect(connection)
        return delivered


# Module-level singleton (one per worker process)
connection_registry = ConnectionRegistry()
