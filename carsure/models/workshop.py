"""Workshop model — an inspection / repair workshop account.

Owned by the workshop service; the appointment flow reads the active
flag and the optional slot catalog.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carsure.models.base import Base, TimestampMixin
from carsure.models.enums import WorkshopType

if TYPE_CHECKING:
    from carsure.models.appointment import Appointment


class Workshop(TimestampMixin, Base):
    """A workshop that receives inspection bookings."""

    __tablename__ = "workshops"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    address: Mapped[str | None] = mapped_column(String(500))
    type: Mapped[str] = mapped_column(String(20), default=WorkshopType.MECHANIC.value, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_certified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Visit prices (DZD)
    price_visit_mechanic: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    price_visit_paint: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    # Own slot catalog; NULL means the configured default
    slot_times: Mapped[list[str] | None] = mapped_column(
        ARRAY(String(5)), comment="HH:MM labels bookable each day"
    )

    # Relationships
    appointments: Mapped[list[Appointment]] = relationship("Appointment", back_populates="workshop")

    def __repr__(self) -> str:
        return f"<Workshop id={self.id} name={self.name} active={self.is_active}>"
