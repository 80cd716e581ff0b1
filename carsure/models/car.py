"""Car model — a listed vehicle (owned by the car service)."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carsure.models.base import Base, TimestampMixin
from carsure.models.enums import CarStatus

if TYPE_CHECKING:
    from carsure.models.appointment import Appointment
    from carsure.models.user import User


class Car(TimestampMixin, Base):
    """A car put on sale by its owner."""

    __tablename__ = "cars"

    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )

    brand: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int | None] = mapped_column(Integer)
    vin: Mapped[str | None] = mapped_column(String(17), unique=True)
    status: Mapped[str] = mapped_column(String(20), default=CarStatus.NO_PROCESS.value, nullable=False)
    images: Mapped[list[str]] = mapped_column(ARRAY(String(500)), default=list, nullable=False)
    qr_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONB, comment="QR verification data")

    # Relationships
    owner: Mapped[User] = relationship("User", back_populates="cars")
    appointments: Mapped[list[Appointment]] = relationship("Appointment", back_populates="car")

    @property
    def display_name(self) -> str:
        name = f"{self.brand} {self.model}"
        return f"{name} ({self.year})" if self.year else name

    def __repr__(self) -> str:
        return f"<Car id={self.id} {self.brand} {self.model}>"
