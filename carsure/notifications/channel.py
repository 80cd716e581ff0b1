"""Live notification WebSocket.

Protocol (JSON text frames):
    client -> server  {"event": "join_user", "user_id": "<account uuid>"}
    client -> server  {"event": "leave_user", "user_id": "<account uuid>"}
    server -> client  {"event": "new_notification", "data": {...}}

The bearer token is passed as the ``token`` query parameter since browsers
cannot set headers on a WebSocket handshake. A socket may only join its
own account's room.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from carsure.auth.tokens import Identity, decode_access_token
from carsure.errors import AuthError
from carsure.notifications.registry import ConnectionRegistry, connection_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])

# Application-defined close code for a rejected handshake token.
CLOSE_UNAUTHORIZED = 4401


async def handle_frame(
    websocket: WebSocket,
    identity: Identity,
    frame: Any,
    registry: ConnectionRegistry,
) -> None:
    """Apply one client frame to the registry."""
    if not isinstance(frame, dict):
        await websocket.send_json({"event": "error", "data": {"message": "Trame invalide"}})
        return

    event = frame.get("event")
    user_id = str(frame.get("user_id") or identity.id)

    if event not in ("join_user", "leave_user"):
        await websocket.send_json(
            {"event": "error", "data": {"message": f"Événement inconnu: {event}"}}
        )
        return

    if user_id != str(identity.id):
        logger.warning("Account %s tried to %s room %s", identity.id, event, user_id)
        await websocket.send_json({"event": "error", "data": {"message": "Accès refusé"}})
        return

    if event == "join_user":
        registry.join(user_id, websocket)
        await websocket.send_json({"event": "joined", "data": {"user_id": user_id}})
    else:
        registry.leave(user_id, websocket)
        await websocket.send_json({"event": "left", "data": {"user_id": user_id}})


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: str = Query("")) -> None:
    try:
        identity = decode_access_token(token)
    except AuthError:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return

    await websocket.accept()
    logger.debug("Socket opened for %s", identity.id)
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"event": "error", "data": {"message": "JSON invalide"}})
                continue
            await handle_frame(websocket, identity, frame, connection_registry)
    except WebSocketDisconnect:
        logger.debug("Socket closed for %s", identity.id)
    finally:
        connection_registry.disconnect(websocket)
