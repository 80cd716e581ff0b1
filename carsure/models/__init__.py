"""SQLAlchemy ORM models for CarSure.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from carsure.models.appointment import Appointment
from carsure.models.audit import AuditLog
from carsure.models.base import Base
from carsure.models.car import Car
from carsure.models.enums import (
    ACTIVE_STATUSES,
    EXPIRABLE_STATUSES,
    AccountRole,
    AppointmentStatus,
    CarStatus,
    NotificationType,
    WorkshopType,
)
from carsure.models.notification import Notification
from carsure.models.user import User
from carsure.models.workshop import Workshop

__all__ = [
    # Base
    "Base",
    # Models
    "User",
    "Workshop",
    "Car",
    "Appointment",
    "Notification",
    "AuditLog",
    # Enums
    "AccountRole",
    "WorkshopType",
    "CarStatus",
    "AppointmentStatus",
    "NotificationType",
    "ACTIVE_STATUSES",
    "EXPIRABLE_STATUSES",
]
