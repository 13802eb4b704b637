"""
auth/gate.py -- The single choke point every protected operation calls.

authenticate() turns a raw access token into a Principal or raises one of
AuthMissing / AuthExpired / AuthInvalid. It must stay cheap: by default it is
a pure signature + expiry check with no I/O.

Suspension policy: access tokens live ACCESS_TOKEN_TTL_SECONDS (15 minutes by
default), so suspension is always enforced at login and at refresh-token
renewal, and a suspended user loses access within one access-token lifetime.
Setting GATE_CHECKS_SUSPENSION=true makes the gate re-read the user row on
every call and reject suspended, unverified or deleted users immediately,
at the cost of one primary-key lookup per request.
"""

from __future__ import annotations

from datetime import datetime

from auth.errors import AuthExpired, AuthForbidden, AuthInvalid, AuthMissing, TokenError, TokenExpired
from auth.models import Principal, Role, User
from auth.store import CredentialStore
from auth.tokens import ACCESS, TokenCodec


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" value, or None."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def suspension_active(user: User, now: datetime) -> bool:
    """True while the user is suspended; an elapsed suspended_until lifts it."""
    if not user.suspended:
        return False
    return user.suspended_until is None or user.suspended_until > now


class AuthGate:
    def __init__(
        self,
        codec: TokenCodec,
        store: CredentialStore | None = None,
        check_suspension: bool = False,
    ) -> None:
        if check_suspension and store is None:
            raise ValueError("check_suspension requires a CredentialStore")
        self._codec = codec
        self._store = store
        self._check_suspension = check_suspension

    def authenticate(self, raw_token: str | None) -> Principal:
        if not raw_token:
            raise AuthMissing()
        try:
            claims = self._codec.verify(raw_token, expected_type=ACCESS)
        except TokenExpired as exc:
            raise AuthExpired() from exc
        except TokenError as exc:
            raise AuthInvalid() from exc

        try:
            user_id = int(claims.subject)
        except ValueError as exc:
            raise AuthInvalid() from exc

        if self._check_suspension:
            user = self._store.get_user_by_id(user_id)
            if user is None or not user.otp_verified or suspension_active(user, self._store.now()):
                raise AuthInvalid()

        return Principal(user_id=user_id, role=claims.role)

    @staticmethod
    def require_role(principal: Principal, *roles: Role) -> Principal:
        """Raise AuthForbidden unless principal holds one of roles. No I/O."""
        if principal.role not in roles:
            raise AuthForbidden()
        return principal
