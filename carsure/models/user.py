"""User model — a car owner / seller account.

Accounts are created and managed by the auth service; this table mirrors
the fields the appointment flow reads.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carsure.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from carsure.models.appointment import Appointment
    from carsure.models.car import Car


class User(TimestampMixin, Base):
    """A seller who lists cars and books inspections."""

    __tablename__ = "users"

    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_certified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    cars: Mapped[list[Car]] = relationship("Car", back_populates="owner")
    appointments: Mapped[list[Appointment]] = relationship("Appointment", back_populates="owner")

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else self.email

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email}>"
