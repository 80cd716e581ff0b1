"""Expiry sweeper — cancel bookings whose day passed while still pending/accepted.

Runs on demand (seller dashboard load, scoped to that seller) and on a
background interval (all appointments). The cancel is a compare-and-swap
``UPDATE ... WHERE status IN (en_attente, accepted) RETURNING id``: only
rows this sweep actually flipped are notified, so overlapping sweeps and
repeated runs notify each appointment exactly once, and a transition that
lands between scan and update is never clobbered.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from carsure.config import settings
from carsure.db.engine import async_session_factory, run_after_commit
from carsure.events.bus import emit
from carsure.models.appointment import Appointment
from carsure.models.base import utcnow
from carsure.models.enums import EXPIRABLE_STATUSES, AppointmentStatus, NotificationType
from carsure.notifications.service import notification_service
from carsure.scheduling.slots import local_today
from carsure.schemas.appointments import ExpiredAppointment
from carsure.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

_EXPIRABLE = [s.value for s in EXPIRABLE_STATUSES]


async def sweep_expired(
    db: AsyncSession,
    *,
    owner_id: uuid.UUID | None = None,
    today: dt.date | None = None,
) -> list[ExpiredAppointment]:
    """Cancel expired appointments and notify both parties.

    Args:
        db: Database session; the caller commits.
        owner_id: Restrict the sweep to one seller's appointments.
        today: Override for the current local date.

    Returns:
        Summaries of the appointments this call cancelled.
    """
    today = today or local_today()

    stmt = (
        select(Appointment)
        .where(Appointment.date < today, Appointment.status.in_(_EXPIRABLE))
        .options(selectinload(Appointment.workshop), selectinload(Appointment.car))
    )
    if owner_id is not None:
        stmt = stmt.where(Appointment.owner_id == owner_id)
    candidates = list((await db.execute(stmt)).scalars().all())
    if not candidates:
        return []

    now = utcnow()
    result = await db.execute(
        update(Appointment)
        .where(
            Appointment.id.in_([a.id for a in candidates]),
            Appointment.status.in_(_EXPIRABLE),
        )
        .values(status=AppointmentStatus.CANCELLED.value, cancelled_at=now, updated_at=now)
        .returning(Appointment.id)
        .execution_options(synchronize_session=False)
    )
    cancelled_ids = set(result.scalars().all())

    expired: list[ExpiredAppointment] = []
    for appt in candidates:
        if appt.id not in cancelled_ids:
            # Moved by a concurrent transition or sweep since the scan.
            continue
        set_committed_value(appt, "status", AppointmentStatus.CANCELLED.value)
        set_committed_value(appt, "cancelled_at", now)
        expired.append(await _notify_expired(db, appt))

    if expired:
        logger.info(
            "Expiry sweep cancelled %d appointment(s) (owner=%s, today=%s)",
            len(expired),
            owner_id or "all",
            today,
        )
    return expired


async def _notify_expired(db: AsyncSession, appt: Appointment) -> ExpiredAppointment:
    car_name = appt.car.display_name if appt.car is not None else "Voiture"
    workshop_name = appt.workshop.name if appt.workshop is not None else "Atelier"
    when = f"le {appt.date.strftime('%d/%m/%Y')} à {appt.time}"

    await notification_service.notify(
        db,
        recipient_id=appt.owner_id,
        sender_id=appt.workshop_id,
        appointment_id=appt.id,
        type_=NotificationType.RDV_EXPIRED,
        message=f"Votre rendez-vous chez {workshop_name} pour {car_name} {when} a expiré et a été annulé.",
    )
    await notification_service.notify(
        db,
        recipient_id=appt.workshop_id,
        appointment_id=appt.id,
        type_=NotificationType.RDV_EXPIRED,
        message=f"Le rendez-vous pour {car_name} {when} a expiré et a été annulé.",
    )

    await emit(SystemEvent(
        event_type=EventType.APPOINTMENT_EXPIRED,
        appointment_id=appt.id,
        actor_id="system",
        actor_role="system",
        data={
            "owner_id": str(appt.owner_id),
            "workshop_id": str(appt.workshop_id),
            "date": appt.date.isoformat(),
            "time": appt.time,
        },
        source_module="scheduling.expiry",
    ))

    return ExpiredAppointment(
        id=appt.id,
        carName=car_name,
        workshopName=workshop_name,
        date=appt.date,
        time=appt.time,
    )


# ── Background schedule ──────────────────────────────────────────────


async def run_expiry_sweep() -> int:
    """One scheduled pass over all appointments, in its own transaction.

    Safe to call on every tick: already-cancelled appointments are skipped.
    """
    try:
        async with async_session_factory() as db:
            expired = await sweep_expired(db)
            await db.commit()
            await run_after_commit(db)
    except Exception:
        logger.exception("Expiry sweep failed")
        return 0

    await emit(SystemEvent(
        event_type=EventType.SYSTEM_MAINTENANCE,
        actor_id="system",
        actor_role="system",
        data={"action": "expiry_sweep", "cancelled": len(expired)},
        source_module="scheduling.expiry",
    ))
    return len(expired)


_sweeper_task: asyncio.Task[None] | None = None


async def _sweeper_loop(interval: int) -> None:
    while True:
        try:
            await run_expiry_sweep()
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Expiry sweeper shutting down")
            break


def start_expiry_sweeper() -> None:
    """Start the periodic sweep. Call during FastAPI lifespan startup."""
    global _sweeper_task
    interval = settings.scheduling.expiry_sweep_interval
    if interval <= 0:
        logger.info("Periodic expiry sweep disabled")
        return
    if _sweeper_task is None or _sweeper_task.done():
        _sweeper_task = asyncio.create_task(_sweeper_loop(interval))
        logger.info("Expiry sweeper started (every %ds)", interval)


async def stop_expiry_sweeper() -> None:
    global _sweeper_task
    if _sweeper_task is not None and not _sweeper_task.done():
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass
    _sweeper_task = None
