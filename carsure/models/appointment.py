"""Appointment model — a car owner's inspection booking at a workshop."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carsure.models.base import Base, TimestampMixin
from carsure.models.enums import ACTIVE_STATUSES, AppointmentStatus

if TYPE_CHECKING:
    from carsure.models.car import Car
    from carsure.models.user import User
    from carsure.models.workshop import Workshop

_ACTIVE_SQL = ", ".join(f"'{s.value}'" for s in sorted(ACTIVE_STATUSES, key=lambda s: s.value))


class Appointment(TimestampMixin, Base):
    """A booked (workshop, date, time) slot for one car."""

    __tablename__ = "appointments"
    __table_args__ = (
        # At most one active appointment per slot; refused/finish/cancelled free it.
        Index(
            "uq_appointments_active_slot",
            "workshop_id",
            "date",
            "time",
            unique=True,
            postgresql_where=text(f"status IN ({_ACTIVE_SQL})"),
        ),
    )

    # Foreign keys
    workshop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("workshops.id"), nullable=False, index=True
    )
    car_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("cars.id"), nullable=False, index=True
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )

    # Slot
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    time: Mapped[str] = mapped_column(String(5), nullable=False, comment="HH:MM slot label")
    status: Mapped[str] = mapped_column(
        String(20), default=AppointmentStatus.EN_ATTENTE.value, nullable=False, index=True
    )

    # Inspection artifacts
    images: Mapped[list[str]] = mapped_column(ARRAY(String(500)), default=list, nullable=False)
    rapport_pdf: Mapped[str | None] = mapped_column(String(500))

    cancelled_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    workshop: Mapped[Workshop] = relationship("Workshop", back_populates="appointments")
    car: Mapped[Car] = relationship("Car", back_populates="appointments")
    owner: Mapped[User] = relationship("User", back_populates="appointments")

    def __repr__(self) -> str:
        return f"<Appointment id={self.id} status={self.status} at={self.date} {self.time}>"
