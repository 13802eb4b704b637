"""
auth/dependencies.py -- FastAPI Depends() helpers around the AuthGate.

Only one auth method is accepted: "Authorization: Bearer <access token>".
Failures are raised as the gate's typed AuthError subclasses; the exception
handler in api/main.py turns them into 401/403 envelopes.

  get_principal()       -> Principal or 401
  require_role(*roles)  -> dependency factory, 401 or 403
  require_admin         -> require_role(Role.ADMIN)

Layer rule: this is the one auth/ module allowed to import fastapi, because
it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.components import AuthComponents
from auth.gate import extract_bearer
from auth.models import Principal, Role


def get_components(request: Request) -> AuthComponents:
    return request.app.state.auth


def bearer_token(request: Request) -> str | None:
    """Raw access token from the Authorization header, or None."""
    return extract_bearer(request.headers.get("Authorization"))


def get_principal(request: Request) -> Principal:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_principal)): ...
    """
    return get_components(request).gate.authenticate(bearer_token(request))


def require_role(*roles: Role) -> Callable[..., Principal]:
    """Build a dependency that admits only callers holding one of roles."""

    def dependency(request: Request, principal: Principal = Depends(get_principal)) -> Principal:
        return get_components(request).gate.require_role(principal, *roles)

    return dependency


require_admin = require_role(Role.ADMIN)
