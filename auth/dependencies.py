"""
auth/dependencies.py -- FastAPI Depends() guard chain.

Guards compose by depending on each other rather than by inheritance:

  require_bearer_token  -- Authorization: Bearer <token> must be present (401)
        |
  require_session       -- token must resolve to a live session (401)
        |
  require_admin         -- session owner must hold the admin role (403)

require_role(*roles) builds further links of the chain for other roles.
Each guard runs before the route body, so AuthService never sees a request
that failed a capability check.

Layer rule: auth/dependencies.py may import from fastapi because it is part of
the FastAPI dependency injection system. It does not import from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from auth.errors import Forbidden, Unauthorized
from auth.models import Session, UserAccount
from auth.service import AuthService


@dataclass
class CurrentSession:
    user: UserAccount
    session: Session
    token: str


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def require_bearer_token(request: Request) -> str:
    """Return the raw bearer token. Raises Unauthorized if the header is missing."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized()
    return token.strip()


def require_session(
    token: str = Depends(require_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> CurrentSession:
    """Require a live session. Raises Unauthorized for revoked, expired, or forged tokens."""
    user, session = service.authenticate(token)
    return CurrentSession(user=user, session=session, token=token)


def require_role(*roles: str):
    """Build a guard that admits only sessions whose owner holds one of roles."""

    def guard(current: CurrentSession = Depends(require_session)) -> CurrentSession:
        if current.user.role not in roles:
            raise Forbidden()
        return current

    return guard


require_admin = require_role("admin")
