"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON field names are camelCase on the wire (accessToken, allDevices, ...);
snake_case names are accepted on input too (populate_by_name).
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import SessionTokens, User, parse_identity
from auth.passwords import MAX_PASSWORD_BYTES

# Character cap only; multibyte passwords are held to the byte limit by
# check_password_strength().
_PASSWORD_MAX = MAX_PASSWORD_BYTES


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _IdentityModel(_CamelModel):
    identity: str = Field(min_length=3, max_length=255, description="Email address or phone number.")

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, value: str) -> str:
        """Reject values that are neither an email nor a phone number."""
        parse_identity(value)
        return value


class SignupInitiateRequest(_IdentityModel):
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    name: str = Field(min_length=1, max_length=255)


class SignupVerifyRequest(_CamelModel):
    user_id: int = Field(gt=0)
    otp: str = Field(min_length=1, max_length=12)


class LoginRequest(_IdentityModel):
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class LogoutRequest(_CamelModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)
    all_devices: bool = False


class ResetRequest(_CamelModel):
    """Identity is NOT validated here: the endpoint answers 200 for anything."""

    identity: str = Field(default="", max_length=255)


class ResetConsumeRequest(_CamelModel):
    token: str = Field(min_length=1, max_length=512)
    new_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class SuspensionRequest(_CamelModel):
    suspended_until: Optional[datetime] = Field(
        default=None,
        description="ISO 8601 timestamp. Omit for an indefinite suspension.",
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    id: int
    email: Optional[str]
    phone: Optional[str]
    name: Optional[str]
    role: str
    otp_verified: bool
    suspended: bool
    suspended_until: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            phone=user.phone,
            name=user.name,
            role=user.role.value,
            otp_verified=user.otp_verified,
            suspended=user.suspended,
            suspended_until=user.suspended_until,
        )


class TokenPairResponse(_CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse

    @classmethod
    def build(cls, tokens: SessionTokens, user: User) -> "TokenPairResponse":
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
            user=UserResponse.from_user(user),
        )


class SignupInitiateResponse(_CamelModel):
    pending_user_ref: int
    otp_expires_at: datetime
    otp_hint: Optional[str] = None  # only populated when DEBUG=true


class ResetRequestResponse(_CamelModel):
    message: str = "If that account exists, we sent reset instructions."
    dev_token: Optional[str] = None  # only populated when DEBUG=true


class MessageResponse(_CamelModel):
    message: str


class OkResponse(_CamelModel):
    ok: bool = True
    revoked: int = 0


class SessionRow(_CamelModel):
    jti: str
    issued_at: datetime
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    replaced_by: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
