"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Stores and flows do the work;
these classes only own the domain shape. Timestamps are timezone-aware UTC
datetimes -- the store converts to and from its ISO 8601 column format.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    STAFF = "STAFF"
    BUSINESS_OWNER = "BUSINESS_OWNER"
    ADMIN = "ADMIN"


@dataclass
class User:
    """An identity record.

    At least one of email / phone is set. otp_hash and otp_expires_at are only
    populated while a signup is pending; both are cleared once the code is
    consumed or dies. A user with otp_verified=False cannot log in, renew,
    or pass the gate.
    """

    role: Role
    hashed_password: str
    id: int | None = None
    email: str | None = None
    phone: str | None = None
    name: str | None = None
    suspended: bool = False
    suspended_until: datetime | None = None  # None + suspended = indefinite
    otp_hash: str | None = None
    otp_expires_at: datetime | None = None
    otp_attempts: int = 0
    otp_verified: bool = False
    created_at: datetime | None = None


@dataclass
class RefreshToken:
    """Server-side record of a refresh token. Rows are revoked, never deleted
    on the request path, so revocations stay auditable."""

    jti: str
    user_id: int
    issued_at: datetime
    expires_at: datetime
    revoked_at: datetime | None = None
    replaced_by: str | None = None  # jti minted when this one was rotated


@dataclass
class PasswordResetToken:
    """A single-use reset capability. Only the HMAC of the raw value is kept."""

    user_id: int
    token_hash: str
    expires_at: datetime
    id: int | None = None
    used_at: datetime | None = None
    invalidated_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class Principal:
    """The authenticated caller as resolved by the gate."""

    user_id: int
    role: Role


@dataclass(frozen=True)
class SessionTokens:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds


# ---------------------------------------------------------------------------
# Identity (email or phone)
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")


@dataclass(frozen=True)
class Identity:
    kind: str  # "email" or "phone"
    value: str


def parse_identity(raw: str) -> Identity:
    """Classify and normalize a login identifier.

    Anything containing "@" must be a plausible email (lower-cased); everything
    else must be a phone number (spaces, dashes and parentheses dropped).
    Raises ValueError otherwise.
    """
    candidate = (raw or "").strip()
    if "@" in candidate:
        if not _EMAIL_RE.match(candidate) or len(candidate) > 255:
            raise ValueError("Not a valid email address.")
        return Identity(kind="email", value=candidate.lower())
    compact = re.sub(r"[\s\-()]", "", candidate)
    if not _PHONE_RE.match(compact):
        raise ValueError("Not a valid email address or phone number.")
    return Identity(kind="phone", value=compact)
