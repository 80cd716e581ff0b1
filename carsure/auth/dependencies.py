"""FastAPI dependencies resolving the caller from the Authorization header."""

from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from carsure.auth.tokens import Identity, decode_access_token
from carsure.errors import AuthError, AuthorizationError
from carsure.models.enums import AccountRole

bearer_scheme = HTTPBearer(auto_error=False)


async def get_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),  # noqa: B008
) -> Identity:
    """Resolve the bearer token into an Identity, raising AuthError (401) otherwise."""
    if credentials is None or not credentials.credentials:
        raise AuthError()
    return decode_access_token(credentials.credentials)


def require_role(*roles: AccountRole):
    """Build a dependency that only lets the given roles through."""

    async def _check(identity: Identity = Depends(get_identity)) -> Identity:  # noqa: B008
        if identity.role not in roles:
            raise AuthorizationError()
        return identity

    return _check


require_user = require_role(AccountRole.USER)
require_workshop = require_role(AccountRole.WORKSHOP)
require_admin = require_role(AccountRole.ADMIN)
