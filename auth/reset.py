"""
auth/reset.py -- Password reset with single-use, sibling-invalidating tokens.

request_reset() never tells the caller whether the identity exists: unknown
identities go through the same token generation and HMAC work and simply
store nothing.

consume() applies four writes in one transaction:
  a. mark this token used (compare-and-set -- the single-use guarantee)
  b. set the new password hash
  c. invalidate every other outstanding reset token of the user
  d. revoke every outstanding refresh token of the user
A password change must end all existing sessions, so (d) always runs even
though the reset request itself never touched sessions. If any step fails the
transaction rolls back and the token stays usable.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.errors import ResetInvalidOrExpired
from auth.models import Identity, PasswordResetToken
from auth.passwords import PasswordHasher, check_password_strength
from auth.store import CredentialStore
from auth.tokens import TokenCodec

logger = logging.getLogger("slotly.auth.reset")


class PasswordResetFlow:
    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        hasher: PasswordHasher,
        ttl: timedelta = timedelta(minutes=15),
        min_password_length: int = 8,
    ) -> None:
        if ttl > timedelta(hours=1):
            raise ValueError("reset token lifetime must not exceed one hour")
        self._store = store
        self._codec = codec
        self._hasher = hasher
        self.ttl = ttl
        self._min_password_length = min_password_length

    def request_reset(self, identity: Identity) -> str | None:
        """Issue a reset token for identity if it exists.

        Returns the raw token for the delivery channel, or None for an unknown
        identity. Callers must respond identically in both cases.
        """
        raw = self._codec.new_opaque_token()
        token_hash = self._codec.digest(raw)
        user = self._store.get_user_by_identity(identity)
        if user is None:
            logger.info("Password reset requested for unknown %s", identity.kind)
            return None

        self._store.create_password_reset_token(
            PasswordResetToken(
                user_id=user.id,
                token_hash=token_hash,
                expires_at=self._store.now() + self.ttl,
            )
        )
        logger.info("Password reset token issued for user %s", user.id)
        return raw

    def consume(self, token_value: str, new_password: str) -> int:
        """Set a new password using a reset token. Returns the user id.

        Raises WeakPassword before any lookup or hashing, and
        ResetInvalidOrExpired for unknown, used, invalidated or expired tokens.
        """
        check_password_strength(new_password, self._min_password_length)
        if not token_value:
            raise ResetInvalidOrExpired()

        record = self._store.find_password_reset_token(self._codec.digest(token_value))
        if (
            record is None
            or record.used_at is not None
            or record.invalidated_at is not None
            or record.expires_at <= self._store.now()
        ):
            raise ResetInvalidOrExpired()

        # Hash outside the transaction so bcrypt does not hold the write lock.
        new_hash = self._hasher.hash(new_password)

        with self._store.transaction() as conn:
            if not self._store.mark_password_reset_used(record.id, conn=conn):
                # Consumed or invalidated by a concurrent request.
                raise ResetInvalidOrExpired()
            if not self._store.update_user(record.user_id, conn=conn, hashed_password=new_hash):
                raise ResetInvalidOrExpired()
            siblings = self._store.invalidate_other_password_reset_tokens(record.user_id, record.id, conn=conn)
            sessions = self._store.revoke_all_refresh_tokens(record.user_id, conn=conn)

        logger.info(
            "Password reset for user %s: %d sibling token(s) invalidated, %d session(s) revoked",
            record.user_id,
            siblings,
            sessions,
        )
        return record.user_id
