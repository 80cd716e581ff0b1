"""Appointment (RDV) HTTP endpoints.

Every response is the ``{"ok": ...}`` JSON envelope; failures are raised
as domain errors and rendered by ``carsure.api.errors``.
"""
# ruff: noqa: B008  — Depends() in function defaults is standard FastAPI

from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from carsure.auth.dependencies import get_identity, require_user, require_workshop
from carsure.auth.tokens import Identity
from carsure.db.engine import commit_session, get_session
from carsure.scheduling.expiry import sweep_expired
from carsure.scheduling.service import scheduling_service
from carsure.schemas.appointments import (
    AppointmentOut,
    CreateAppointmentRequest,
    StatusUpdateRequest,
)
from carsure.security.rate_limiter import rate_limiter
from carsure.storage.files import IncomingFile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rdv-workshop", tags=["appointments"])
stats_router = APIRouter(prefix="/api/workshop-stats", tags=["appointments"])


async def _read_upload(upload: UploadFile) -> IncomingFile:
    data = await upload.read()
    return IncomingFile(
        filename=upload.filename or "upload",
        content_type=upload.content_type or "application/octet-stream",
        data=data,
    )


def _many(appointments: list[Any]) -> list[dict[str, Any]]:
    return [AppointmentOut.from_model(a).to_wire() for a in appointments]


@router.get("/available-times")
async def available_times(
    id_workshop: uuid.UUID = Query(...),
    date: dt.date = Query(...),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    """Free and taken slot labels of a workshop day."""
    availability = await scheduling_service.get_availability(db, id_workshop, date)
    return {
        "ok": True,
        "availableTimes": availability.available,
        "unavailableTimes": availability.unavailable,
    }


@router.post("/create", status_code=201)
async def create_appointment(
    body: CreateAppointmentRequest,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_user),
) -> dict[str, Any]:
    await rate_limiter.enforce_booking(identity.id)
    appointment = await scheduling_service.create_appointment(
        db, identity, body.id_workshop, body.id_car, body.date, body.time
    )
    await commit_session(db)
    return {
        "ok": True,
        "message": "Rendez-vous créé avec succès",
        "appointment": AppointmentOut.from_model(appointment).to_wire(),
    }


@router.get("/my-appointments")
async def my_appointments(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_user),
) -> dict[str, Any]:
    appointments = await scheduling_service.list_for_owner(db, identity.id)
    return {"ok": True, "appointments": _many(appointments)}


@router.get("/workshop-appointments")
async def workshop_appointments(
    date: dt.date | None = Query(None),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_workshop),
) -> dict[str, Any]:
    appointments = await scheduling_service.list_for_workshop(db, identity.id, day=date)
    return {"ok": True, "appointments": _many(appointments)}


@router.post("/check-expired-seller")
async def check_expired_seller(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_user),
) -> dict[str, Any]:
    """Cancel the caller's expired bookings and list what was removed."""
    expired = await sweep_expired(db, owner_id=identity.id)
    await commit_session(db)
    return {
        "ok": True,
        "deletedAppointments": [e.model_dump(mode="json") for e in expired],
    }


@router.get("/car/{car_id}")
async def car_appointments(
    car_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    appointments = await scheduling_service.list_for_car(db, identity, car_id)
    return {"ok": True, "appointments": _many(appointments)}


@router.get("/{appointment_id}")
async def get_appointment(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_identity),
) -> dict[str, Any]:
    appointment = await scheduling_service.get_appointment(db, identity, appointment_id)
    return {"ok": True, "appointment": AppointmentOut.from_model(appointment).to_wire()}


@router.put("/{appointment_id}/status")
async def update_status(
    appointment_id: uuid.UUID,
    body: StatusUpdateRequest,
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_workshop),
) -> dict[str, Any]:
    appointment = await scheduling_service.change_status(db, identity, appointment_id, body.status)
    await commit_session(db)
    return {
        "ok": True,
        "message": "Statut mis à jour",
        "appointment": AppointmentOut.from_model(appointment).to_wire(),
    }


@router.post("/{appointment_id}/images")
async def upload_images(
    appointment_id: uuid.UUID,
    images: list[UploadFile] = File(...),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_workshop),
) -> dict[str, Any]:
    files = [await _read_upload(upload) for upload in images]
    appointment = await scheduling_service.add_images(db, identity, appointment_id, files)
    await commit_session(db)
    return {
        "ok": True,
        "message": "Images ajoutées",
        "appointment": AppointmentOut.from_model(appointment).to_wire(),
    }


@router.post("/{appointment_id}/pdf")
async def upload_pdf(
    appointment_id: uuid.UUID,
    rapport_pdf: UploadFile = File(...),
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_workshop),
) -> dict[str, Any]:
    file = await _read_upload(rapport_pdf)
    appointment = await scheduling_service.set_report(db, identity, appointment_id, file)
    await commit_session(db)
    return {
        "ok": True,
        "message": "Rapport PDF ajouté",
        "appointment": AppointmentOut.from_model(appointment).to_wire(),
    }


@stats_router.get("/today")
async def workshop_today(
    db: AsyncSession = Depends(get_session),
    identity: Identity = Depends(require_workshop),
) -> dict[str, Any]:
    """Today's bookings of the calling workshop with status counts."""
    appointments, stats = await scheduling_service.workshop_today(db, identity.id)
    return {"ok": True, "appointments": _many(appointments), "stats": stats.model_dump()}
