"""
auth/passwords.py -- Password hashing and strength policy.

bcrypt is used directly (no passlib wrapper). passlib's internal wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects
with an explicit error. The work factor is configurable (BCRYPT_ROUNDS) so
tests can run at the minimum cost of 4.

The same hasher digests signup OTPs: a 6-digit code is low-entropy, so it
gets bcrypt's slowness just like a password.
"""

from __future__ import annotations

import bcrypt

from auth.errors import WeakPassword

# bcrypt only reads the first 72 bytes and bcrypt 5 rejects longer input
# outright, so the policy limit is on encoded bytes, not characters.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Slow, salted one-way hashing with a fixed work factor per instance."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash. Computed once so the first lookup of
        # an unknown identity is not measurably slower than later ones.
        self._dummy_hash = self.hash("slotly_timing_dummy")

    def hash(self, raw: str) -> str:
        """Return a bcrypt hash of raw.

        raw must be at most MAX_PASSWORD_BYTES once UTF-8 encoded;
        check_password_strength() enforces that before any caller gets here.
        """
        return bcrypt.hashpw(raw.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, raw: str, digest: str) -> bool:
        """Return True if raw matches digest. Comparison is constant-time."""
        try:
            return bcrypt.checkpw(raw.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            # Malformed digest, or raw over 72 bytes -- treat as a mismatch.
            return False

    def burn(self, raw: str) -> None:
        """Spend one verify() worth of time against the dummy hash.

        Call this on the unknown-identity branch so response time does not
        reveal whether the account exists.
        """
        self.verify(raw, self._dummy_hash)


def check_password_strength(password: str, min_length: int = 8) -> None:
    """Raise WeakPassword unless password meets the policy.

    Policy: at least min_length characters, at most MAX_PASSWORD_BYTES bytes
    of UTF-8, at least one letter and one digit.
    Runs before any hashing so weak input never costs a bcrypt round.
    """
    if len(password) < min_length:
        raise WeakPassword(f"Password must be at least {min_length} characters.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise WeakPassword(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    if not any(c.isalpha() for c in password) or not any(c.isdigit() for c in password):
        raise WeakPassword("Password must contain at least one letter and one digit.")
