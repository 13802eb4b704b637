"""
api/routes/v1/auth.py -- Signup, login, session and password-reset endpoints.

Routes:
  POST /api/v1/auth/signup/initiate          -- create pending user, issue OTP
  POST /api/v1/auth/signup/verify            -- consume OTP, open first session
  POST /api/v1/auth/login                    -- password login, open session
  POST /api/v1/auth/refresh                  -- rotate refresh token
  POST /api/v1/auth/logout                   -- revoke one or all refresh tokens (Bearer required)
  GET  /api/v1/auth/me                       -- current user (Bearer required)
  POST /api/v1/auth/password-reset/request   -- always 200 (no account enumeration)
  POST /api/v1/auth/password-reset/consume   -- set new password, end all sessions

Domain failures are raised as auth.errors.AuthError subclasses and rendered by
the handler in api/main.py; these handlers never build error bodies by hand.

Security:
  Endpoints accepting guessable secrets are rate-limited per IP
  (LOGIN_RATE_LIMIT, default 10/minute).
  Token-bearing responses carry Cache-Control: no-store.
  OTP and reset token values are echoed back only when DEBUG=true.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import CREDENTIAL_RATE_LIMIT, limiter
from api.models import (
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    OkResponse,
    RefreshRequest,
    ResetConsumeRequest,
    ResetRequest,
    ResetRequestResponse,
    SignupInitiateRequest,
    SignupInitiateResponse,
    SignupVerifyRequest,
    TokenPairResponse,
    UserResponse,
)
from auth.dependencies import bearer_token, get_components, get_principal
from auth.errors import StoreUnavailable, UserNotFound
from auth.models import Principal, parse_identity
from core.config import get_settings

logger = logging.getLogger("slotly.api.auth")

# Auth policy:
# - signup/initiate, signup/verify, login, refresh:  public
# - password-reset/request, password-reset/consume:  public
# - logout, me:                                       Bearer access token
router = APIRouter()


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


@limiter.limit(CREDENTIAL_RATE_LIMIT)
@router.post("/auth/signup/initiate", response_model=SignupInitiateResponse, status_code=201)
def signup_initiate(request: Request, body: SignupInitiateRequest) -> SignupInitiateResponse:
    """Create (or restart) a pending signup and issue a one-time code.

    The code itself goes to the user's email/phone through the delivery
    channel. In DEBUG mode it is also returned as otpHint.
    """
    auth = get_components(request)
    pending = auth.otp.begin_signup(parse_identity(body.identity), body.password, body.name)
    return SignupInitiateResponse(
        pending_user_ref=pending.user_id,
        otp_expires_at=pending.otp_expires_at,
        otp_hint=pending.otp if get_settings().debug else None,
    )


@limiter.limit(CREDENTIAL_RATE_LIMIT)
@router.post("/auth/signup/verify", response_model=TokenPairResponse)
def signup_verify(request: Request, response: Response, body: SignupVerifyRequest) -> TokenPairResponse:
    """Consume the signup code and return the first access/refresh pair."""
    tokens, user = get_components(request).otp.confirm(body.user_id, body.otp)
    _no_store(response)
    return TokenPairResponse.build(tokens, user)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(CREDENTIAL_RATE_LIMIT)
@router.post("/auth/login", response_model=TokenPairResponse)
def login(request: Request, response: Response, body: LoginRequest) -> TokenPairResponse:
    """Authenticate with identity and password.

    Unknown identity and wrong password produce the same bad_credentials
    error after the same bcrypt work.
    """
    tokens, user = get_components(request).sessions.login(parse_identity(body.identity), body.password)
    _no_store(response)
    return TokenPairResponse.build(tokens, user)


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
    """Rotate a refresh token. The presented token is dead after this call."""
    tokens, user = get_components(request).sessions.renew(body.refresh_token)
    _no_store(response)
    return TokenPairResponse.build(tokens, user)


@router.post("/auth/logout", response_model=OkResponse)
def logout(request: Request, body: Optional[LogoutRequest] = None) -> OkResponse:
    """Revoke the supplied refresh token, or every session when allDevices is set.

    Requires a valid access token (401 otherwise). A missing or foreign
    refresh token is not an error.
    """
    body = body or LogoutRequest()
    revoked = get_components(request).sessions.logout(
        bearer_token(request),
        refresh_value=body.refresh_token,
        all_devices=body.all_devices,
    )
    return OkResponse(revoked=revoked)


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, principal: Principal = Depends(get_principal)) -> UserResponse:
    """Return the profile of the authenticated caller."""
    user = get_components(request).store.get_user_by_id(principal.user_id)
    if user is None:
        raise UserNotFound()
    return UserResponse.from_user(user)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(CREDENTIAL_RATE_LIMIT)
@router.post("/auth/password-reset/request", response_model=ResetRequestResponse)
def password_reset_request(request: Request, body: ResetRequest) -> ResetRequestResponse:
    """Start a password reset. Always answers 200 with the same message.

    Malformed and unknown identities take the same path as real ones so the
    response does not reveal which accounts exist. A store outage is logged
    and answered the same way.
    """
    try:
        identity = parse_identity(body.identity)
    except ValueError:
        return ResetRequestResponse()
    try:
        raw = get_components(request).resets.request_reset(identity)
    except StoreUnavailable:
        logger.error("Reset request dropped: credential store unavailable", exc_info=True)
        return ResetRequestResponse()
    if raw is not None and get_settings().debug:
        return ResetRequestResponse(dev_token=raw)
    return ResetRequestResponse()


@router.post("/auth/password-reset/consume", response_model=MessageResponse)
def password_reset_consume(request: Request, body: ResetConsumeRequest) -> MessageResponse:
    """Set a new password with a reset token. Signs the user out everywhere."""
    get_components(request).resets.consume(body.token, body.new_password)
    return MessageResponse(message="Password updated.")
