"""Notification retrieval and read-state endpoints."""
# ruff: noqa: B008  — Depends() in function defaults is standard FastAPI

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from carsure.auth.dependencies import get_identity
from carsure.auth.tokens import Identity
from carsure.db.engine import commit_session, get_session
from carsure.errors import NotFound
from carsure.notifications.service import notification_service
from carsure.schemas.notifications import NotificationOut

router = APIRouter(prefix="/api/notification", tags=["notifications"])


@router.get("")
async def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    notifications = await notification_service.list_for(db, identity.id, limit=limit)
    unread = await notification_service.unread_count(db, identity.id)
    return {
        "ok": True,
        "notifications": [NotificationOut.from_model(n).to_wire() for n in notifications],
        "unreadCount": unread,
    }


@router.put("/read-all")
async def read_all(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    count = await notification_service.mark_all_read(db, identity.id)
    await commit_session(db)
    return {"ok": True, "updated": count}


@router.put("/read-chat-messages/{sender_id}")
async def read_chat_messages(
    sender_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    count = await notification_service.mark_sender_messages_read(db, identity.id, sender_id)
    await commit_session(db)
    return {"ok": True, "updated": count}


@router.put("/{notification_id}/read")
async def read_one(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    notification = await notification_service.mark_read(db, identity.id, notification_id)
    if notification is None:
        raise NotFound("Notification introuvable")
    await commit_session(db)
    return {"ok": True, "notification": NotificationOut.from_model(notification).to_wire()}
