"""Availability checker — which slot labels a workshop can still take on a day.

A slot is identified by (workshop, date, "HH:MM"). It is unavailable while
an appointment in an active status (en_attente, accepted, en_cours) holds it.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
import uuid
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carsure.config import settings
from carsure.models.appointment import Appointment
from carsure.models.enums import ACTIVE_STATUSES
from carsure.models.workshop import Workshop

logger = logging.getLogger(__name__)

_SLOT_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class Availability:
    """Slot catalog of one workshop day, split by whether it can be booked."""

    available: list[str] = field(default_factory=list)
    unavailable: list[str] = field(default_factory=list)

    def is_free(self, time: str) -> bool:
        return time in self.available


def is_valid_slot_label(label: str) -> bool:
    return bool(_SLOT_RE.match(label))


def local_today() -> dt.date:
    """Today's date in the marketplace's time zone."""
    return dt.datetime.now(ZoneInfo(settings.scheduling.timezone)).date()


def slot_catalog(workshop: Workshop) -> list[str]:
    """The workshop's own labels if it configured any, else the global default."""
    labels = workshop.slot_times or settings.scheduling.slot_labels
    return sorted({label for label in labels if is_valid_slot_label(label)})


def partition_slots(
    catalog: list[str],
    booked: set[str],
    *,
    bookable: bool = True,
) -> Availability:
    """Split a catalog into free and taken labels.

    ``bookable=False`` (past day, inactive workshop) reports the whole
    catalog as unavailable. Booked labels outside the catalog are still
    reported as unavailable.
    """
    if not bookable:
        return Availability(available=[], unavailable=sorted(set(catalog) | booked))
    unavailable = sorted(booked)
    available = [label for label in catalog if label not in booked]
    return Availability(available=available, unavailable=unavailable)


async def booked_times(
    db: AsyncSession,
    workshop_id: uuid.UUID,
    day: dt.date,
    exclude_id: uuid.UUID | None = None,
) -> set[str]:
    """Labels held by active appointments of a workshop on a day."""
    stmt = select(Appointment.time).where(
        Appointment.workshop_id == workshop_id,
        Appointment.date == day,
        Appointment.status.in_([s.value for s in ACTIVE_STATUSES]),
    )
    if exclude_id is not None:
        stmt = stmt.where(Appointment.id != exclude_id)
    result = await db.execute(stmt)
    return set(result.scalars().all())


async def check_availability(
    db: AsyncSession,
    workshop: Workshop,
    day: dt.date,
    today: dt.date | None = None,
) -> Availability:
    """Compute the available / unavailable split for a workshop day."""
    today = today or local_today()
    booked = await booked_times(db, workshop.id, day)
    bookable = workshop.is_active and day >= today
    availability = partition_slots(slot_catalog(workshop), booked, bookable=bookable)
    logger.debug(
        "Availability workshop=%s day=%s: %d free, %d taken",
        workshop.id,
        day,
        len(availability.available),
        len(availability.unavailable),
    )
    return availability
