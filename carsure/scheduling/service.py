"""Scheduling service — book, read, and advance workshop appointments.

Booking re-checks the slot inside the inserting transaction and relies on
the partial unique index ``uq_appointments_active_slot`` as the final
arbiter, so two concurrent bookings of one slot yield exactly one
appointment and one SlotConflict. Status changes lock the appointment
row (SELECT ... FOR UPDATE) so concurrent accept/refuse cannot both win.
"""

from __future__ import annotations

import datetime as dt
import functools
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from carsure.auth.tokens import Identity
from carsure.config import settings
from carsure.db.engine import add_after_rollback
from carsure.errors import AuthorizationError, NotFound, SlotConflict, ValidationError
from carsure.events.bus import emit
from carsure.models.appointment import Appointment
from carsure.models.car import Car
from carsure.models.enums import AppointmentStatus, NotificationType
from carsure.models.user import User
from carsure.models.workshop import Workshop
from carsure.notifications.service import notification_service
from carsure.scheduling.slots import (
    Availability,
    booked_times,
    check_availability,
    local_today,
    slot_catalog,
)
from carsure.scheduling.transitions import (
    check_finish_ready,
    check_transition,
    parse_status,
    reclaims_slot,
)
from carsure.schemas.appointments import TodayStats
from carsure.schemas.events import EventType, SystemEvent
from carsure.storage.files import FileStore, IncomingFile, file_store

logger = logging.getLogger(__name__)

S = AppointmentStatus

# Owner-facing wording for each workshop decision.
_STATUS_MESSAGES: dict[AppointmentStatus, str] = {
    S.ACCEPTED: "L'atelier {workshop} a accepté votre rendez-vous du {date} à {time} pour {car}.",
    S.REFUSED: "L'atelier {workshop} a refusé votre rendez-vous du {date} à {time} pour {car}.",
    S.EN_ATTENTE: "L'atelier {workshop} a remis en attente votre rendez-vous du {date} à {time} pour {car}.",
    S.EN_COURS: "L'inspection de votre {car} a commencé chez {workshop}.",
    S.FINISH: "L'inspection de votre {car} chez {workshop} est terminée. Le rapport est disponible.",
}


def _with_relations(stmt):
    return stmt.options(
        selectinload(Appointment.workshop),
        selectinload(Appointment.car),
        selectinload(Appointment.owner),
    )


def _format_date(day: dt.date) -> str:
    return day.strftime("%d/%m/%Y")


class SchedulingService:
    """Appointment store and status transition engine."""

    def __init__(self, store: FileStore) -> None:
        self._store = store

    # ── Lookups ──────────────────────────────────────────────────────

    async def _get_workshop(self, db: AsyncSession, workshop_id: uuid.UUID) -> Workshop:
        result = await db.execute(select(Workshop).where(Workshop.id == workshop_id))
        workshop = result.scalar_one_or_none()
        if workshop is None:
            raise NotFound("Atelier introuvable")
        return workshop

    async def _get_car(self, db: AsyncSession, car_id: uuid.UUID) -> Car:
        result = await db.execute(select(Car).where(Car.id == car_id))
        car = result.scalar_one_or_none()
        if car is None:
            raise NotFound("Voiture introuvable")
        return car

    async def _get_appointment(
        self,
        db: AsyncSession,
        appointment_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Appointment:
        stmt = _with_relations(select(Appointment).where(Appointment.id == appointment_id))
        if for_update:
            stmt = stmt.with_for_update(of=Appointment)
        result = await db.execute(stmt)
        appointment = result.scalar_one_or_none()
        if appointment is None:
            raise NotFound("Rendez-vous introuvable")
        return appointment

    @staticmethod
    def _authorize_view(identity: Identity, appointment: Appointment) -> None:
        """Only the owning seller, the target workshop, or an admin may read it."""
        if identity.is_admin:
            return
        if identity.is_user and appointment.owner_id == identity.id:
            return
        if identity.is_workshop and appointment.workshop_id == identity.id:
            return
        raise AuthorizationError()

    @staticmethod
    def _authorize_workshop_action(identity: Identity, appointment: Appointment) -> None:
        if not (identity.is_workshop and appointment.workshop_id == identity.id):
            raise AuthorizationError("Seul l'atelier concerné peut modifier ce rendez-vous")

    # ── Availability ─────────────────────────────────────────────────

    async def get_availability(
        self,
        db: AsyncSession,
        workshop_id: uuid.UUID,
        day: dt.date,
    ) -> Availability:
        workshop = await self._get_workshop(db, workshop_id)
        return await check_availability(db, workshop, day)

    # ── Booking ──────────────────────────────────────────────────────

    async def create_appointment(
        self,
        db: AsyncSession,
        identity: Identity,
        workshop_id: uuid.UUID,
        car_id: uuid.UUID,
        day: dt.date,
        time: str,
    ) -> Appointment:
        """Book a slot for one of the caller's cars.

        Raises:
            ValidationError: past date, inactive workshop, or unknown slot label.
            NotFound: workshop or car missing.
            AuthorizationError: the car is not the caller's.
            SlotConflict: the slot is held by another active appointment.
        """
        if day < local_today():
            raise ValidationError("La date du rendez-vous est déjà passée")

        workshop = await self._get_workshop(db, workshop_id)
        car = await self._get_car(db, car_id)
        if car.owner_id != identity.id:
            raise AuthorizationError("Cette voiture ne vous appartient pas")
        if not workshop.is_active:
            raise ValidationError("Cet atelier n'accepte pas de rendez-vous")
        if time not in slot_catalog(workshop):
            raise ValidationError(f"Créneau inconnu pour cet atelier: {time}")

        booked = await booked_times(db, workshop.id, day)
        if time in booked:
            await self._report_conflict(identity, workshop.id, day, time)
            raise SlotConflict(sorted(booked))

        appointment = Appointment(
            id=uuid.uuid4(),
            workshop_id=workshop.id,
            car_id=car.id,
            owner_id=identity.id,
            date=day,
            time=time,
            status=S.EN_ATTENTE.value,
            images=[],
            workshop=workshop,
            car=car,
        )
        try:
            async with db.begin_nested():
                db.add(appointment)
                await db.flush()
        except IntegrityError:
            # Lost the race: another booking committed this slot first.
            booked = await booked_times(db, workshop_id, day)
            await self._report_conflict(identity, workshop_id, day, time)
            raise SlotConflict(sorted(booked | {time})) from None

        owner = (await db.execute(select(User).where(User.id == identity.id))).scalar_one_or_none()
        owner_name = owner.display_name if owner is not None else "Un client"
        await notification_service.notify(
            db,
            recipient_id=workshop.id,
            sender_id=identity.id,
            appointment_id=appointment.id,
            type_=NotificationType.NEW_RDV_WORKSHOP,
            message=(
                f"Nouveau rendez-vous: {owner_name} pour {car.display_name} "
                f"le {_format_date(day)} à {time}."
            ),
        )

        await emit(SystemEvent(
            event_type=EventType.APPOINTMENT_BOOKED,
            appointment_id=appointment.id,
            actor_id=str(identity.id),
            actor_role=identity.role.value,
            data={
                "workshop_id": str(workshop.id),
                "car_id": str(car.id),
                "date": day.isoformat(),
                "time": time,
            },
            source_module="scheduling.service",
        ))

        logger.info(
            "Appointment booked: id=%s workshop=%s %s %s owner=%s",
            appointment.id,
            workshop.id,
            day,
            time,
            identity.id,
        )
        return appointment

    async def _report_conflict(
        self,
        identity: Identity,
        workshop_id: uuid.UUID,
        day: dt.date,
        time: str,
    ) -> None:
        logger.info("Slot conflict: workshop=%s %s %s (caller=%s)", workshop_id, day, time, identity.id)
        await emit(SystemEvent(
            event_type=EventType.APPOINTMENT_SLOT_CONFLICT,
            actor_id=str(identity.id),
            actor_role=identity.role.value,
            data={"workshop_id": str(workshop_id), "date": day.isoformat(), "time": time},
            source_module="scheduling.service",
        ))

    # ── Reads ────────────────────────────────────────────────────────

    async def get_appointment(
        self,
        db: AsyncSession,
        identity: Identity,
        appointment_id: uuid.UUID,
    ) -> Appointment:
        appointment = await self._get_appointment(db, appointment_id)
        self._authorize_view(identity, appointment)
        return appointment

    async def list_for_owner(self, db: AsyncSession, owner_id: uuid.UUID) -> list[Appointment]:
        result = await db.execute(
            _with_relations(select(Appointment))
            .where(Appointment.owner_id == owner_id)
            .order_by(Appointment.date.desc(), Appointment.time.desc())
        )
        return list(result.scalars().all())

    async def list_for_workshop(
        self,
        db: AsyncSession,
        workshop_id: uuid.UUID,
        day: dt.date | None = None,
    ) -> list[Appointment]:
        stmt = _with_relations(select(Appointment)).where(Appointment.workshop_id == workshop_id)
        if day is not None:
            stmt = stmt.where(Appointment.date == day)
        result = await db.execute(stmt.order_by(Appointment.date.asc(), Appointment.time.asc()))
        return list(result.scalars().all())

    async def list_for_car(
        self,
        db: AsyncSession,
        identity: Identity,
        car_id: uuid.UUID,
    ) -> list[Appointment]:
        car = await self._get_car(db, car_id)
        if not identity.is_admin and car.owner_id != identity.id:
            raise AuthorizationError()
        result = await db.execute(
            _with_relations(select(Appointment))
            .where(Appointment.car_id == car_id)
            .order_by(Appointment.date.desc(), Appointment.time.desc())
        )
        return list(result.scalars().all())

    async def workshop_today(
        self,
        db: AsyncSession,
        workshop_id: uuid.UUID,
    ) -> tuple[list[Appointment], TodayStats]:
        """Today's appointments of a workshop plus per-status counts."""
        appointments = await self.list_for_workshop(db, workshop_id, day=local_today())
        stats = TodayStats(total=len(appointments))
        for appt in appointments:
            if appt.status == S.FINISH.value:
                stats.completed += 1
            elif appt.status == S.EN_COURS.value:
                stats.progress += 1
            elif appt.status in (S.EN_ATTENTE.value, S.ACCEPTED.value):
                stats.pending += 1
        return appointments, stats

    # ── Transitions ──────────────────────────────────────────────────

    async def change_status(
        self,
        db: AsyncSession,
        identity: Identity,
        appointment_id: uuid.UUID,
        requested: str,
    ) -> Appointment:
        """Move an appointment along the status graph and notify its owner.

        Raises:
            ValidationError: unknown or non-settable status.
            NotFound / AuthorizationError: missing, or not the caller's workshop.
            InvalidTransition: not an edge of the graph, or finishing without artifacts.
            SlotConflict: re-opening a refused booking whose slot was taken meanwhile.
        """
        target = parse_status(requested)
        appointment = await self._get_appointment(db, appointment_id, for_update=True)
        self._authorize_workshop_action(identity, appointment)

        current = AppointmentStatus(appointment.status)
        check_transition(current, target)
        if target is S.FINISH:
            check_finish_ready(appointment.images, appointment.rapport_pdf)

        # Captured up front: a rolled-back savepoint expires the instance.
        appt_id, workshop_id = appointment.id, appointment.workshop_id
        day, time = appointment.date, appointment.time

        if reclaims_slot(current, target):
            booked = await booked_times(db, workshop_id, day, exclude_id=appt_id)
            if time in booked:
                raise SlotConflict(sorted(booked))

        try:
            async with db.begin_nested():
                appointment.status = target.value
                await db.flush()
        except IntegrityError:
            booked = await booked_times(db, workshop_id, day, exclude_id=appt_id)
            raise SlotConflict(sorted(booked | {time})) from None

        await notification_service.notify(
            db,
            recipient_id=appointment.owner_id,
            sender_id=appointment.workshop_id,
            appointment_id=appointment.id,
            type_=NotificationType.RDV_WORKSHOP,
            message=_STATUS_MESSAGES[target].format(
                workshop=appointment.workshop.name,
                car=appointment.car.display_name,
                date=_format_date(appointment.date),
                time=appointment.time,
            ),
        )

        await emit(SystemEvent(
            event_type=EventType.APPOINTMENT_STATUS_CHANGED,
            appointment_id=appointment.id,
            actor_id=str(identity.id),
            actor_role=identity.role.value,
            data={"from_status": current.value, "to_status": target.value},
            source_module="scheduling.service",
        ))

        logger.info(
            "Appointment %s: %s -> %s (workshop=%s)",
            appointment.id,
            current.value,
            target.value,
            identity.id,
        )
        return appointment

    # ── Inspection artifacts ─────────────────────────────────────────

    async def _lock_for_upload(
        self,
        db: AsyncSession,
        identity: Identity,
        appointment_id: uuid.UUID,
    ) -> Appointment:
        appointment = await self._get_appointment(db, appointment_id, for_update=True)
        self._authorize_workshop_action(identity, appointment)
        if appointment.status not in (S.EN_COURS.value, S.FINISH.value):
            raise ValidationError("Les fichiers ne peuvent être ajoutés qu'une fois l'inspection commencée")
        return appointment

    async def add_images(
        self,
        db: AsyncSession,
        identity: Identity,
        appointment_id: uuid.UUID,
        files: list[IncomingFile],
    ) -> Appointment:
        """Append inspection photos. Does not change the status."""
        if not files:
            raise ValidationError("Aucune image fournie")
        appointment = await self._lock_for_upload(db, identity, appointment_id)

        current = list(appointment.images or [])
        if len(current) + len(files) > settings.storage.max_images:
            raise ValidationError(f"Maximum {settings.storage.max_images} images par rendez-vous")

        urls = await self._store.save_images(appointment.id, files)
        add_after_rollback(db, functools.partial(self._store.discard, urls))
        appointment.images = current + urls
        await db.flush()

        await self._emit_upload(identity, appointment, "images", len(urls))
        return appointment

    async def set_report(
        self,
        db: AsyncSession,
        identity: Identity,
        appointment_id: uuid.UUID,
        file: IncomingFile,
    ) -> Appointment:
        """Attach (or replace) the PDF inspection report. Does not change the status."""
        appointment = await self._lock_for_upload(db, identity, appointment_id)
        url = await self._store.save_pdf(appointment.id, file)
        add_after_rollback(db, functools.partial(self._store.discard, [url]))
        appointment.rapport_pdf = url
        await db.flush()

        await self._emit_upload(identity, appointment, "rapport_pdf", 1)
        return appointment

    async def _emit_upload(
        self,
        identity: Identity,
        appointment: Appointment,
        kind: str,
        count: int,
    ) -> None:
        await emit(SystemEvent(
            event_type=EventType.APPOINTMENT_ARTIFACT_UPLOADED,
            appointment_id=appointment.id,
            actor_id=str(identity.id),
            actor_role=identity.role.value,
            data={"kind": kind, "count": count},
            source_module="scheduling.service",
        ))
        logger.info("Appointment %s: %d %s uploaded", appointment.id, count, kind)


# Module-level singleton
scheduling_service = SchedulingService(file_store)
