"""
api/routes/v1/admin.py -- Admin-only account actions.

Routes:
  PATCH  /api/v1/admin/users/{id}/suspension  -- suspend (optionally until a time); revokes all sessions
  DELETE /api/v1/admin/users/{id}/suspension  -- lift a suspension
  GET    /api/v1/admin/users/{id}/sessions    -- refresh-token audit trail

All routes require an ADMIN access token (401 without one, 403 for other roles).
"""

from __future__ import annotations

from datetime import timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import SessionRow, SuspensionRequest, UserResponse
from auth.dependencies import get_components, require_admin
from auth.errors import UserNotFound
from auth.models import Principal

router = APIRouter()


@router.patch("/admin/users/{user_id}/suspension", response_model=UserResponse)
def suspend_user(
    request: Request,
    user_id: int,
    body: Optional[SuspensionRequest] = None,
    admin: Principal = Depends(require_admin),
) -> UserResponse:
    """Suspend a user and terminate all of their sessions.

    Blocks self-suspension -- an admin locking themselves out has no recovery
    path short of direct DB access.
    """
    if user_id == admin.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_suspension", "message": "You cannot suspend your own account."},
        )
    auth = get_components(request)
    until = body.suspended_until if body else None
    if until is not None:
        if until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        if until <= auth.store.now():
            raise HTTPException(
                status_code=400,
                detail={"code": "invalid_until", "message": "suspendedUntil must be in the future."},
            )
    user = auth.sessions.suspend_user(user_id, until)
    return UserResponse.from_user(user)


@router.delete("/admin/users/{user_id}/suspension", response_model=UserResponse)
def unsuspend_user(
    request: Request,
    user_id: int,
    admin: Principal = Depends(require_admin),
) -> UserResponse:
    """Lift a suspension. Sessions revoked by the suspension stay revoked."""
    user = get_components(request).sessions.unsuspend_user(user_id)
    return UserResponse.from_user(user)


@router.get("/admin/users/{user_id}/sessions", response_model=list[SessionRow])
def list_sessions(
    request: Request,
    user_id: int,
    admin: Principal = Depends(require_admin),
) -> list[SessionRow]:
    """Every refresh token ever issued to the user, newest first."""
    store = get_components(request).store
    if store.get_user_by_id(user_id) is None:
        raise UserNotFound()
    return [
        SessionRow(
            jti=t.jti,
            issued_at=t.issued_at,
            expires_at=t.expires_at,
            revoked_at=t.revoked_at,
            replaced_by=t.replaced_by,
        )
        for t in store.list_refresh_tokens(user_id)
    ]
