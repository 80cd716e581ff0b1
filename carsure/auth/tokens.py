"""Bearer token encoding/decoding.

Tokens are issued by the account service and signed with the shared
``JWT_SECRET``. Claims: ``sub`` (account UUID), ``role``
(user | workshop | admin), ``exp``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

from carsure.config import settings
from carsure.errors import AuthError
from carsure.models.enums import AccountRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller."""

    id: uuid.UUID
    role: AccountRole

    @property
    def is_admin(self) -> bool:
        return self.role is AccountRole.ADMIN

    @property
    def is_workshop(self) -> bool:
        return self.role is AccountRole.WORKSHOP

    @property
    def is_user(self) -> bool:
        return self.role is AccountRole.USER


def create_access_token(
    account_id: uuid.UUID,
    role: AccountRole,
    expires_in: timedelta | None = None,
) -> str:
    """Sign a token. Used by development tooling and tests."""
    expiry = expires_in or timedelta(minutes=settings.security.access_token_expire_minutes)
    payload = {
        "sub": str(account_id),
        "role": role.value,
        "exp": datetime.now(UTC) + expiry,
    }
    return jwt.encode(payload, settings.security.jwt_secret, algorithm=settings.security.jwt_algorithm)


def decode_access_token(token: str) -> Identity:
    """Verify a token and return the caller identity.

    Raises:
        AuthError: if the token lacks ``sub``/``role``/``exp``, is malformed, or expired.
    """
    if not settings.security.jwt_secret:
        logger.error("JWT_SECRET not configured; rejecting token")
        raise AuthError("Authentification indisponible")

    try:
        payload = jwt.decode(
            token,
            settings.security.jwt_secret,
            algorithms=[settings.security.jwt_algorithm],
            options={"require": ["sub", "role", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Session expirée, veuillez vous reconnecter") from exc
    except jwt.InvalidTokenError as exc:
        logger.warning("Invalid token: %s", exc)
        raise AuthError("Jeton invalide") from exc

    try:
        return Identity(
            id=uuid.UUID(str(payload["sub"])),
            role=AccountRole(payload["role"]),
        )
    except ValueError as exc:
        raise AuthError("Jeton invalide") from exc
