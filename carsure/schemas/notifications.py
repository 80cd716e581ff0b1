"""Notification payloads shared by the REST endpoints and the live push."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from carsure.models.notification import Notification


class NotificationOut(BaseModel):
    """Wire shape of a notification (``createdAt`` as the web client expects)."""

    model_config = ConfigDict(populate_by_name=True)

    id: uuid.UUID
    id_sender: uuid.UUID | None = None
    id_appointment: uuid.UUID | None = None
    message: str
    type: str
    is_read: bool = False
    created_at: datetime = Field(serialization_alias="createdAt")

    @classmethod
    def from_model(cls, notification: Notification) -> NotificationOut:
        return cls(
            id=notification.id,
            id_sender=notification.sender_id,
            id_appointment=notification.appointment_id,
            message=notification.message,
            type=notification.type,
            is_read=notification.is_read,
            created_at=notification.created_at,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WarningRequest(BaseModel):
    """Body of an administrative warning."""

    message: str = Field(min_length=1, max_length=1000)
