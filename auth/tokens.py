"""
auth/tokens.py -- Stateless signing and verification of JWTs, plus the
opaque-token helpers used for password reset.

Security design decisions:
  JWT: python-jose with HS256 only. The algorithms list is pinned so a token
       claiming "none" or an asymmetric alg is rejected before any claim is
       read. Access tokens carry sub/role/type/iat/exp/iss/aud; refresh
       tokens carry sub/jti/type instead of role.

  Fail closed: a string that is not three base64url segments is rejected as
       malformed without being decoded. Claims are only inspected after the
       signature verifies.

  Clock: expiry is evaluated against the injected clock, not jose's own
       wall-clock read, so verification is deterministic for a fixed secret
       and clock.

  Reset tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. We store
       HMAC-SHA256(SECRET_KEY, raw) so the store can do an O(1) lookup and a
       leaked DB does not yield usable tokens.

  Key rotation (several verification keys, one signing key) is not
       implemented; the secret is fixed for the life of the process.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import TokenExpired, TokenInvalidSignature, TokenMalformed
from auth.models import Role

logger = logging.getLogger("slotly.auth.tokens")

_ALGORITHM = "HS256"
_JWT_SHAPE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$")

ACCESS = "access"
REFRESH = "refresh"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims. role is None for refresh tokens, jti is None for access tokens."""

    subject: str
    token_type: str
    expires_at: datetime
    role: Role | None = None
    jti: str | None = None


class TokenCodec:
    """Signs and verifies access and refresh JWTs.

    Usage:
        codec = TokenCodec(secret_key=settings.secret_key)
        token = codec.issue("42", Role.CUSTOMER, timedelta(minutes=15))
        claims = codec.verify(token)   # raises TokenExpired / TokenInvalidSignature / TokenMalformed
    """

    def __init__(
        self,
        secret_key: str,
        issuer: str = "slotly",
        audience: str = "slotly-clients",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret_key = secret_key
        self._issuer = issuer
        self._audience = audience
        self._clock = clock

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, subject: str, role: Role, ttl: timedelta) -> str:
        """Return a signed access token binding subject, role and expiry."""
        return self._encode(subject, ttl, type=ACCESS, role=Role(role).value)

    def issue_refresh(self, subject: str, jti: str, ttl: timedelta) -> str:
        """Return a signed refresh token whose jti keys the server-side record."""
        return self._encode(subject, ttl, type=REFRESH, jti=jti)

    def _encode(self, subject: str, ttl: timedelta, **extra: str) -> str:
        now = self._clock()
        payload = {
            "sub": str(subject),
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "iss": self._issuer,
            "aud": self._audience,
            **extra,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, expected_type: str = ACCESS) -> TokenClaims:
        """Verify signature, issuer, audience, type and expiry.

        Raises:
            TokenMalformed:        not JWT-shaped, or required claims missing/wrong type.
            TokenInvalidSignature: signature, issuer or audience does not verify.
            TokenExpired:          exp is at or before the clock's now.
        """
        if not isinstance(token, str) or not _JWT_SHAPE.match(token):
            raise TokenMalformed()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise TokenInvalidSignature(detail="claims") from exc
        except JWTError as exc:
            raise TokenInvalidSignature() from exc

        subject = payload.get("sub")
        exp = payload.get("exp")
        if not subject or not isinstance(exp, int) or payload.get("type") != expected_type:
            raise TokenMalformed()

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if expires_at <= self._clock():
            raise TokenExpired()

        if expected_type == ACCESS:
            try:
                role = Role(payload.get("role"))
            except ValueError as exc:
                raise TokenMalformed() from exc
            return TokenClaims(subject=subject, token_type=ACCESS, expires_at=expires_at, role=role)

        jti = payload.get("jti")
        if not jti or not isinstance(jti, str):
            raise TokenMalformed()
        return TokenClaims(subject=subject, token_type=REFRESH, expires_at=expires_at, jti=jti)

    # ------------------------------------------------------------------
    # Opaque tokens
    # ------------------------------------------------------------------

    @staticmethod
    def new_jti() -> str:
        return secrets.token_hex(16)

    @staticmethod
    def new_opaque_token() -> str:
        """256-bit URL-safe random token (password reset links)."""
        return secrets.token_urlsafe(32)

    def digest(self, raw: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw) as hex -- the stored form of an opaque token."""
        return hmac.new(self._secret_key.encode(), raw.encode(), hashlib.sha256).hexdigest()
