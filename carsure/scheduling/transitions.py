"""Appointment status graph.

Only the workshop moves an appointment; creation implies ``en_attente``
and the expiry sweeper alone writes ``cancelled``.
"""

from __future__ import annotations

from carsure.errors import InvalidTransition, ValidationError
from carsure.models.enums import ACTIVE_STATUSES, AppointmentStatus

S = AppointmentStatus

# Transition map: {current_status: allowed next statuses}
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.EN_ATTENTE: frozenset({S.ACCEPTED, S.REFUSED}),
    S.ACCEPTED: frozenset({S.EN_COURS}),
    S.EN_COURS: frozenset({S.FINISH}),
    S.REFUSED: frozenset({S.ACCEPTED, S.EN_ATTENTE}),
    S.FINISH: frozenset(),
    S.CANCELLED: frozenset(),
}

# Statuses a client may request through the status endpoint.
SETTABLE: frozenset[AppointmentStatus] = frozenset(TRANSITIONS) - {S.CANCELLED}


def parse_status(value: str) -> AppointmentStatus:
    """Turn a requested status string into a settable status."""
    try:
        status = AppointmentStatus(value)
    except ValueError:
        raise ValidationError(f"Statut inconnu: {value}") from None
    if status not in SETTABLE:
        raise ValidationError(f"Statut non modifiable: {value}")
    return status


def allowed_targets(current: AppointmentStatus) -> list[str]:
    return sorted(s.value for s in TRANSITIONS.get(current, frozenset()))


def is_terminal(status: AppointmentStatus) -> bool:
    return not TRANSITIONS.get(status)


def check_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """Raise InvalidTransition unless ``current -> target`` is an edge of the graph."""
    if target not in TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(current.value, target.value, allowed_targets(current))


def check_finish_ready(images: list[str] | None, rapport_pdf: str | None) -> None:
    """An inspection can only be finished with photos and a report attached."""
    missing = []
    if not images:
        missing.append("images")
    if not rapport_pdf:
        missing.append("rapport PDF")
    if missing:
        raise InvalidTransition(
            S.EN_COURS.value,
            S.FINISH.value,
            [],
            message=f"Impossible de terminer: {' et '.join(missing)} manquant(s)",
        )


def reclaims_slot(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """True when the move makes a slot-free appointment hold its slot again."""
    return current not in ACTIVE_STATUSES and target in ACTIVE_STATUSES
