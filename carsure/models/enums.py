"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization. Values are the exact
strings the web frontend already matches on.
"""

from __future__ import annotations

from enum import Enum


class AccountRole(str, Enum):
    """Role claim carried by a bearer token."""

    USER = "user"  # car owner / seller
    WORKSHOP = "workshop"
    ADMIN = "admin"


class WorkshopType(str, Enum):
    """What kind of work a workshop performs."""

    MECHANIC = "mechanic"
    PAINT = "paint"
    INSPECTOR = "inspector"


class CarStatus(str, Enum):
    """Listing state of a car (owned by the car service)."""

    NO_PROCESS = "no_proccess"  # sic, matches the stored value
    EN_ATTENTE = "en_attente"
    ACTIF = "actif"
    SOLD = "sold"


class AppointmentStatus(str, Enum):
    """Appointment (RDV) lifecycle states."""

    EN_ATTENTE = "en_attente"
    ACCEPTED = "accepted"
    REFUSED = "refused"
    EN_COURS = "en_cours"
    FINISH = "finish"
    CANCELLED = "cancelled"  # expiry sweeper only


class NotificationType(str, Enum):
    """Routing tag used by clients to decide where a notification leads."""

    NEW_RDV_WORKSHOP = "new_rdv_workshop"
    RDV_WORKSHOP = "rdv_workshop"
    RDV_EXPIRED = "rdv_expired"
    WARNING = "warning"
    MESSAGE = "message"
    OTHER = "other"


# Statuses that hold a (workshop, date, time) slot.
ACTIVE_STATUSES: frozenset[AppointmentStatus] = frozenset({
    AppointmentStatus.EN_ATTENTE,
    AppointmentStatus.ACCEPTED,
    AppointmentStatus.EN_COURS,
})

# Statuses the expiry sweeper cancels once the date has passed.
EXPIRABLE_STATUSES: frozenset[AppointmentStatus] = frozenset({
    AppointmentStatus.EN_ATTENTE,
    AppointmentStatus.ACCEPTED,
})
