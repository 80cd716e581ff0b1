"""Domain error taxonomy.

Services raise these; ``carsure.api.errors`` turns each into the
``{"ok": false, "message": ...}`` JSON envelope with its HTTP status.
"""

from __future__ import annotations

from typing import Any


class CarSureError(Exception):
    """Base for every error that maps to a structured API response."""

    status_code: int = 400
    default_message: str = "Requête invalide"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        """Additional envelope fields."""
        return {}


class ValidationError(CarSureError):
    """Malformed input; carries field-level messages."""

    status_code = 422
    default_message = "Données invalides"

    def __init__(self, errors: list[str] | str, message: str | None = None) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__(message or (self.errors[0] if len(self.errors) == 1 else None))

    def extra(self) -> dict[str, Any]:
        return {"errors": self.errors}


class AuthError(CarSureError):
    """Missing, malformed or expired bearer token."""

    status_code = 401
    default_message = "Authentification requise"


class AuthorizationError(CarSureError):
    """Authenticated, but not allowed to touch this resource."""

    status_code = 403
    default_message = "Accès refusé"


class NotFound(CarSureError):
    status_code = 404
    default_message = "Ressource introuvable"


class SlotConflict(CarSureError):
    """Requested time is no longer free.

    Carries the current unavailable labels so the caller can redisplay
    choices without another availability query.
    """

    status_code = 409
    default_message = "Ce créneau n'est plus disponible"

    def __init__(self, unavailable_times: list[str], message: str | None = None) -> None:
        self.unavailable_times = list(unavailable_times)
        super().__init__(message)

    def extra(self) -> dict[str, Any]:
        return {"unavailableTimes": self.unavailable_times}


class InvalidTransition(CarSureError):
    """Status change not legal from the current state."""

    status_code = 409
    default_message = "Changement de statut non autorisé"

    def __init__(
        self,
        current: str,
        requested: str,
        allowed: list[str] | None = None,
        message: str | None = None,
    ) -> None:
        self.current = current
        self.requested = requested
        self.allowed = allowed or []
        super().__init__(message or f"Transition invalide: {current} -> {requested}")

    def extra(self) -> dict[str, Any]:
        return {"currentStatus": self.current, "allowed": self.allowed}


class UpstreamIO(CarSureError):
    """Storage or channel failure."""

    status_code = 503
    default_message = "Service temporairement indisponible, veuillez réessayer"


class RateLimited(CarSureError):
    status_code = 429
    default_message = "Trop de requêtes, veuillez patienter"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__()

    def extra(self) -> dict[str, Any]:
        return {"retryAfter": self.retry_after}
