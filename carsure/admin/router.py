"""Admin moderation endpoints."""
# ruff: noqa: B008  — Depends() in function defaults is standard FastAPI

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carsure.auth.dependencies import require_admin
from carsure.auth.tokens import Identity
from carsure.db.engine import commit_session, get_session
from carsure.errors import NotFound
from carsure.events.bus import emit
from carsure.models.car import Car
from carsure.models.enums import NotificationType
from carsure.notifications.service import notification_service
from carsure.schemas.events import EventType, SystemEvent
from carsure.schemas.notifications import NotificationOut, WarningRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/cars/{car_id}/warning")
async def warn_car_owner(
    car_id: uuid.UUID,
    body: WarningRequest,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_admin),
) -> dict[str, Any]:
    """Send a moderation warning about a listing to its owner."""
    car = (await db.execute(select(Car).where(Car.id == car_id))).scalar_one_or_none()
    if car is None:
        raise NotFound("Voiture introuvable")

    notification = await notification_service.notify(
        db,
        recipient_id=car.owner_id,
        sender_id=identity.id,
        type_=NotificationType.WARNING,
        message=f"Avertissement concernant {car.display_name}: {body.message}",
    )

    await emit(SystemEvent(
        event_type=EventType.ADMIN_WARNING,
        actor_id=str(identity.id),
        actor_role=identity.role.value,
        data={"car_id": str(car.id), "owner_id": str(car.owner_id)},
        source_module="admin.router",
    ))
    await commit_session(db)
    logger.info("Admin %s warned owner %s about car %s", identity.id, car.owner_id, car.id)

    return {
        "ok": True,
        "message": "Avertissement envoyé",
        "notification": NotificationOut.from_model(notification).to_wire(),
    }
