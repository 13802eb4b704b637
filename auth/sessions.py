"""
auth/sessions.py -- Refresh-token sessions: mint, rotate, revoke.

Session truth lives in the refresh_tokens table; the process holds nothing
between requests. The refresh token handed to clients is a signed JWT whose
jti keys the server-side row, so garbage is rejected without a DB hit and
revocation is a single-row update.

Rotation: every successful renew() revokes the presented jti and inserts its
successor in one transaction. The revoke is compare-and-set, so of two
requests racing on the same jti (renew/renew or renew/logout) exactly one
wins and the other observes SessionRevoked.

Login uses timing equalization: bcrypt runs whether or not the identity
exists, so response time does not reveal which accounts are registered.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.engine import Connection

from auth.errors import (
    AccountSuspended,
    InvalidCredentials,
    NotVerified,
    SessionExpired,
    SessionNotFound,
    SessionRevoked,
    TokenError,
    TokenExpired,
    UserNotFound,
)
from auth.gate import AuthGate, suspension_active
from auth.models import Identity, RefreshToken, Role, SessionTokens, User
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from auth.tokens import REFRESH, TokenCodec

logger = logging.getLogger("slotly.auth.sessions")


class SessionManager:
    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        hasher: PasswordHasher,
        gate: AuthGate,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=30),
    ) -> None:
        self._store = store
        self._codec = codec
        self._hasher = hasher
        self._gate = gate
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def create_session(self, user_id: int, role: Role, conn: Connection | None = None) -> SessionTokens:
        """Persist a fresh refresh-token row and return the access/refresh pair.

        Pass conn to mint inside a caller's transaction (OTP confirmation does).
        """
        record = self._new_record(user_id)
        self._store.create_refresh_token(record, conn=conn)
        return self._tokens_for(user_id, role, record.jti)

    def login(self, identity: Identity, password: str) -> tuple[SessionTokens, User]:
        """Check credentials and open a session.

        Wrong identity and wrong password raise the same InvalidCredentials.
        """
        user = self._store.get_user_by_identity(identity)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt.
            self._hasher.burn(password)
            logger.info("Login failed: unknown %s", identity.kind)
            raise InvalidCredentials()
        if not self._hasher.verify(password, user.hashed_password):
            logger.info("Login failed: bad password for user %s", user.id)
            raise InvalidCredentials()
        if not user.otp_verified:
            raise NotVerified()
        if suspension_active(user, self._store.now()):
            logger.warning("Login refused: user %s is suspended", user.id)
            raise AccountSuspended()
        tokens = self.create_session(user.id, user.role)
        logger.info("Login succeeded for user %s", user.id)
        return tokens, user

    # ------------------------------------------------------------------
    # Renew
    # ------------------------------------------------------------------

    def renew(self, refresh_value: str) -> tuple[SessionTokens, User]:
        """Exchange a refresh token for a new pair, revoking the old jti.

        Raises SessionNotFound, SessionRevoked, SessionExpired, and
        AccountSuspended / NotVerified for owners who may not hold a session.
        """
        try:
            claims = self._codec.verify(refresh_value, expected_type=REFRESH)
        except TokenExpired as exc:
            raise SessionExpired() from exc
        except TokenError as exc:
            raise SessionNotFound() from exc

        record = self._store.find_refresh_token(claims.jti)
        if record is None or str(record.user_id) != claims.subject:
            raise SessionNotFound()
        if record.revoked_at is not None:
            if record.replaced_by:
                logger.warning("Rotated refresh token replayed for user %s (jti=%s)", record.user_id, record.jti)
            raise SessionRevoked()
        now = self._store.now()
        if record.expires_at <= now:
            raise SessionExpired()

        user = self._store.get_user_by_id(record.user_id)
        if user is None:
            raise SessionNotFound()
        if not user.otp_verified:
            raise NotVerified()
        if suspension_active(user, now):
            logger.warning("Renewal refused: user %s is suspended", user.id)
            raise AccountSuspended()

        successor = self._new_record(user.id)
        with self._store.transaction() as conn:
            if not self._store.rotate_refresh_token(record.jti, successor, conn=conn):
                # Lost the race to a concurrent renew or logout.
                raise SessionRevoked()
        return self._tokens_for(user.id, user.role, successor.jti), user

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    def logout(self, access_token: str | None, refresh_value: str | None = None, all_devices: bool = False) -> int:
        """Revoke refresh tokens for the caller. Returns how many were revoked.

        The access token must be valid (AuthInvalid otherwise) even though only
        refresh-token state changes: it proves the caller holds the session.
        Single-device logout with a missing, foreign or undecodable refresh
        token is a no-op, so logout is idempotent.
        """
        principal = self._gate.authenticate(access_token)

        if all_devices:
            count = self._store.revoke_all_refresh_tokens(principal.user_id)
            logger.info("Logout (all devices) for user %s: %d token(s) revoked", principal.user_id, count)
            return count

        if not refresh_value:
            return 0
        try:
            claims = self._codec.verify(refresh_value, expected_type=REFRESH)
        except TokenError:
            return 0
        if claims.subject != str(principal.user_id):
            return 0
        revoked = self._store.revoke_refresh_token(claims.jti)
        logger.info("Logout for user %s: jti revoked=%s", principal.user_id, revoked)
        return 1 if revoked else 0

    def suspend_user(self, user_id: int, until: datetime | None = None) -> User:
        """Suspend a user and revoke all of their sessions in one transaction."""
        with self._store.transaction() as conn:
            if not self._store.set_suspension(user_id, True, until, conn=conn):
                raise UserNotFound()
            count = self._store.revoke_all_refresh_tokens(user_id, conn=conn)
            user = self._store.get_user_by_id(user_id, conn=conn)
        logger.warning("User %s suspended until %s; %d session(s) revoked", user_id, until or "further notice", count)
        return user

    def unsuspend_user(self, user_id: int) -> User:
        with self._store.transaction() as conn:
            if not self._store.set_suspension(user_id, False, conn=conn):
                raise UserNotFound()
            user = self._store.get_user_by_id(user_id, conn=conn)
        logger.info("User %s unsuspended", user_id)
        return user

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_record(self, user_id: int) -> RefreshToken:
        now = self._store.now()
        return RefreshToken(
            jti=self._codec.new_jti(),
            user_id=user_id,
            issued_at=now,
            expires_at=now + self.refresh_ttl,
        )

    def _tokens_for(self, user_id: int, role: Role, jti: str) -> SessionTokens:
        return SessionTokens(
            access_token=self._codec.issue(str(user_id), role, self.access_ttl),
            refresh_token=self._codec.issue_refresh(str(user_id), jti, self.refresh_ttl),
            expires_in=int(self.access_ttl.total_seconds()),
        )
