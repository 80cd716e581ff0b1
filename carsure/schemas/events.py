"""SystemEvent schema — the internal event type flowing through the event bus.

Every appointment action emits a SystemEvent. Subscribers (the audit
logger) consume these events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Appointment lifecycle
    APPOINTMENT_BOOKED = "appointment.booked"
    APPOINTMENT_STATUS_CHANGED = "appointment.status_changed"
    APPOINTMENT_EXPIRED = "appointment.expired"
    APPOINTMENT_SLOT_CONFLICT = "appointment.slot_conflict"
    APPOINTMENT_ARTIFACT_UPLOADED = "appointment.artifact_uploaded"

    # Admin
    ADMIN_WARNING = "admin.warning"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"
    SYSTEM_MAINTENANCE = "system.maintenance"


class SystemEvent(BaseModel):
    """Core event that flows through the CarSure backend.

    Immutable once created. Consumed by:
    - audit_on_event → writes to audit_log table
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional — not every event concerns an appointment)
    appointment_id: uuid.UUID | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
