"""
auth/otp.py -- OTP-gated signup confirmation.

A signup attempt moves INITIATED -> VERIFIED (terminal) or INITIATED ->
EXPIRED (terminal for that code; a new initiate starts a fresh attempt).

  initiate()      hash password, generate + hash a 6-digit code, compute expiry.
                  Pure: persists nothing.
  begin_signup()  initiate() + persist the pending user (or reset an existing
                  pending one for the same identity).
  confirm()       check the code and, in ONE transaction, flip otp_verified,
                  clear the OTP fields and mint the first session.

Codes are single use. An expired code is cleared when it is observed, and the
code is also cleared after OTP_MAX_ATTEMPTS wrong guesses, so after either
only a fresh initiate yields a usable code. There is no resend-same-code path.

Delivery (SMS/email) is the caller's concern; this module only hands back
the plaintext code once.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from auth.errors import AlreadyVerified, IdentityTaken, OtpExpired, OtpMismatch, UserNotFound
from auth.models import Identity, Role, SessionTokens, User
from auth.passwords import PasswordHasher, check_password_strength
from auth.sessions import SessionManager
from auth.store import CredentialStore

logger = logging.getLogger("slotly.auth.otp")

OTP_LENGTH = 6


@dataclass(frozen=True)
class OtpMaterial:
    """What initiate() hands back for the caller to persist or carry forward."""

    hashed_password: str
    hashed_otp: str
    otp_expiry: datetime
    otp: str  # plaintext, for the delivery channel only -- never stored


@dataclass(frozen=True)
class PendingSignup:
    user_id: int
    otp: str
    otp_expires_at: datetime


class OtpVerifier:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        sessions: SessionManager,
        ttl: timedelta = timedelta(minutes=15),
        max_attempts: int = 5,
        preset: str | None = None,
        min_password_length: int = 8,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._sessions = sessions
        self.ttl = ttl
        self.max_attempts = max_attempts
        self._preset = preset
        self._min_password_length = min_password_length

    def generate_code(self) -> str:
        """Random 6-digit code, or the development preset when one is configured."""
        if self._preset:
            return self._preset
        return f"{secrets.randbelow(10**OTP_LENGTH):0{OTP_LENGTH}d}"

    def initiate(self, identity: Identity, raw_password: str) -> OtpMaterial:
        """Produce the hashed material for a new signup attempt. Does not persist."""
        check_password_strength(raw_password, self._min_password_length)
        otp = self.generate_code()
        return OtpMaterial(
            hashed_password=self._hasher.hash(raw_password),
            hashed_otp=self._hasher.hash(otp),
            otp_expiry=self._store.now() + self.ttl,
            otp=otp,
        )

    def begin_signup(self, identity: Identity, raw_password: str, name: str | None = None) -> PendingSignup:
        """Initiate and persist a pending user.

        A pending (unverified) user with the same identity is reset with the
        new material; a verified one raises IdentityTaken.
        """
        material = self.initiate(identity, raw_password)
        pending_fields = dict(
            name=name,
            hashed_password=material.hashed_password,
            otp_hash=material.hashed_otp,
            otp_expires_at=material.otp_expiry,
            otp_attempts=0,
        )

        existing = self._store.get_user_by_identity(identity)
        if existing is not None:
            if existing.otp_verified:
                raise IdentityTaken()
            self._store.update_user(existing.id, **pending_fields)
            user_id = existing.id
            logger.info("Signup restarted for pending user %s", user_id)
        else:
            user = User(
                role=Role.CUSTOMER,
                email=identity.value if identity.kind == "email" else None,
                phone=identity.value if identity.kind == "phone" else None,
                **pending_fields,
            )
            try:
                user_id = self._store.create_user(user)
            except IntegrityError as exc:
                # A concurrent initiate for the same identity inserted first.
                raise IdentityTaken() from exc
            logger.info("Signup initiated for new user %s", user_id)

        return PendingSignup(user_id=user_id, otp=material.otp, otp_expires_at=material.otp_expiry)

    def confirm(self, user_id: int, supplied_otp: str) -> tuple[SessionTokens, User]:
        """Consume the pending code and open the first session.

        Raises UserNotFound, AlreadyVerified, OtpExpired or OtpMismatch. A
        mismatch never says which part of the check failed.
        """
        user = self._store.get_user_by_id(user_id)
        if user is None:
            raise UserNotFound()
        if user.otp_verified:
            raise AlreadyVerified()
        if not user.otp_hash or user.otp_expires_at is None:
            raise OtpExpired()
        if user.otp_expires_at <= self._store.now():
            self._store.clear_otp(user.id)
            raise OtpExpired()

        if not self._hasher.verify(str(supplied_otp), user.otp_hash):
            attempts = self._store.record_otp_failure(user.id, self.max_attempts)
            logger.info("OTP mismatch for user %s (attempt %d/%d)", user.id, attempts, self.max_attempts)
            raise OtpMismatch()

        with self._store.transaction() as conn:
            if not self._store.mark_otp_verified(user.id, user.otp_hash, self._store.now(), conn=conn):
                # The checked code is no longer live: a concurrent confirm won,
                # or the code was dropped after the hash comparison.
                current = self._store.get_user_by_id(user.id, conn=conn)
                if current is not None and current.otp_verified:
                    raise AlreadyVerified()
                raise OtpExpired()
            tokens = self._sessions.create_session(user.id, user.role, conn=conn)
            verified = self._store.get_user_by_id(user.id, conn=conn)
        logger.info("Signup verified for user %s", user.id)
        return tokens, verified
