"""Request and response shapes of the ``/api/rdv-workshop`` endpoints."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from carsure.models.appointment import Appointment
from carsure.scheduling.slots import is_valid_slot_label


class CreateAppointmentRequest(BaseModel):
    """Booking request sent by a car owner."""

    id_workshop: uuid.UUID
    id_car: uuid.UUID
    date: dt.date
    time: str

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_slot_label(v):
            msg = "time must be an HH:MM slot label"
            raise ValueError(msg)
        return v


class StatusUpdateRequest(BaseModel):
    status: str


class WorkshopRef(BaseModel):
    id: uuid.UUID
    name: str
    phone: str | None = None
    address: str | None = None


class CarRef(BaseModel):
    id: uuid.UUID
    brand: str
    model: str
    year: int | None = None


class OwnerRef(BaseModel):
    id: uuid.UUID
    firstName: str | None = None
    lastName: str | None = None
    phone: str | None = None


class AppointmentOut(BaseModel):
    """Wire shape of an appointment."""

    model_config = ConfigDict(populate_by_name=True)

    id: uuid.UUID
    id_workshop: uuid.UUID
    id_car: uuid.UUID
    id_owner: uuid.UUID
    date: dt.date
    time: str
    status: str
    images: list[str] = Field(default_factory=list)
    rapport_pdf: str | None = None
    created_at: dt.datetime | None = Field(default=None, serialization_alias="createdAt")
    workshop: WorkshopRef | None = None
    car: CarRef | None = None
    owner: OwnerRef | None = None

    @classmethod
    def from_model(cls, appt: Appointment) -> AppointmentOut:
        """Build from an ORM row; related rows are included only when already loaded."""
        loaded = appt.__dict__
        workshop = loaded.get("workshop")
        car = loaded.get("car")
        owner = loaded.get("owner")
        return cls(
            id=appt.id,
            id_workshop=appt.workshop_id,
            id_car=appt.car_id,
            id_owner=appt.owner_id,
            date=appt.date,
            time=appt.time,
            status=appt.status,
            images=list(appt.images or []),
            rapport_pdf=appt.rapport_pdf,
            created_at=appt.created_at,
            workshop=WorkshopRef(
                id=workshop.id, name=workshop.name, phone=workshop.phone, address=workshop.address
            ) if workshop is not None else None,
            car=CarRef(
                id=car.id, brand=car.brand, model=car.model, year=car.year
            ) if car is not None else None,
            owner=OwnerRef(
                id=owner.id, firstName=owner.first_name, lastName=owner.last_name, phone=owner.phone
            ) if owner is not None else None,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ExpiredAppointment(BaseModel):
    """One entry of the seller dashboard's 'expired and removed' summary."""

    id: uuid.UUID
    carName: str
    workshopName: str
    date: dt.date
    time: str


class TodayStats(BaseModel):
    total: int = 0
    completed: int = 0
    pending: int = 0
    progress: int = 0
