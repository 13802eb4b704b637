"""
auth/errors.py -- Closed set of typed failures raised by the auth core.

Every expected, recoverable condition has its own class with a stable
machine-readable `code` and the HTTP status the API layer maps it to. Callers
match on the class (``except SessionRevoked``), never on message text.

StoreUnavailable is the only collaborator failure. The API logs it with full
detail and returns a generic message.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for every failure the auth core surfaces to callers."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Access token / gate
# ---------------------------------------------------------------------------


class AuthInvalid(AuthError):
    status_code = 401
    code = "auth_invalid"
    default_message = "Invalid or expired token."


class AuthMissing(AuthInvalid):
    code = "auth_missing"
    default_message = "Authorization header missing or malformed."


class AuthExpired(AuthInvalid):
    code = "auth_expired"
    default_message = "Access token expired."


class AuthForbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Insufficient role for this operation."


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    status_code = 401
    code = "token_invalid"
    default_message = "Token rejected."


class TokenInvalidSignature(TokenError):
    code = "token_invalid_signature"
    default_message = "Token signature does not verify."


class TokenExpired(TokenError):
    code = "token_expired"
    default_message = "Token expired."


class TokenMalformed(TokenError):
    code = "token_malformed"
    default_message = "Token is malformed."


# ---------------------------------------------------------------------------
# Login / account state
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    status_code = 401
    code = "bad_credentials"
    default_message = "Invalid credentials."


class NotVerified(AuthError):
    status_code = 403
    code = "not_verified"
    default_message = "Account has not completed verification."


class AccountSuspended(AuthError):
    status_code = 403
    code = "account_suspended"
    default_message = "Account suspended. Contact support."


class UserNotFound(AuthError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found."


class IdentityTaken(AuthError):
    status_code = 409
    code = "identity_taken"
    default_message = "An account with that email or phone already exists."


# ---------------------------------------------------------------------------
# Refresh sessions
# ---------------------------------------------------------------------------


class SessionError(AuthError):
    status_code = 401
    code = "session_invalid"
    default_message = "Refresh token no longer valid."


class SessionRevoked(SessionError):
    code = "session_revoked"
    default_message = "Refresh token has been revoked."


class SessionExpired(SessionError):
    code = "session_expired"
    default_message = "Refresh token expired."


class SessionNotFound(SessionError):
    code = "session_not_found"
    default_message = "Refresh token not recognised."


# ---------------------------------------------------------------------------
# Signup OTP
# ---------------------------------------------------------------------------


class OtpError(AuthError):
    status_code = 400
    code = "otp_invalid"
    default_message = "Invalid code."


class OtpExpired(OtpError):
    code = "otp_expired"
    default_message = "Code expired. Request a new one."


class OtpMismatch(OtpError):
    code = "otp_mismatch"
    default_message = "Invalid code."


class AlreadyVerified(OtpError):
    code = "already_verified"
    default_message = "Account already verified."


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class ResetInvalidOrExpired(AuthError):
    status_code = 400
    code = "reset_invalid_or_expired"
    default_message = "Reset token invalid or expired."


class WeakPassword(AuthError):
    status_code = 400
    code = "weak_password"
    default_message = "Password does not meet the strength requirements."


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class StoreUnavailable(AuthError):
    status_code = 503
    code = "store_unavailable"
    default_message = "Service temporarily unavailable."
