"""
auth/components.py -- Builds the auth object graph from Settings.

One CredentialStore handle is created (or passed in) and handed explicitly to
every component; nothing reaches for hidden global state. The API lifespan
calls build_components() once and parks the result on app.state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth.gate import AuthGate
from auth.otp import OtpVerifier
from auth.passwords import PasswordHasher
from auth.reset import PasswordResetFlow
from auth.sessions import SessionManager
from auth.store import CredentialStore
from auth.tokens import TokenCodec, utcnow
from core.config import Settings


@dataclass
class AuthComponents:
    store: CredentialStore
    codec: TokenCodec
    hasher: PasswordHasher
    gate: AuthGate
    sessions: SessionManager
    otp: OtpVerifier
    resets: PasswordResetFlow

    def close(self) -> None:
        self.store.close()


def build_components(
    settings: Settings,
    store: CredentialStore | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> AuthComponents:
    """Wire every component against one store, one codec and one clock."""
    if store is None:
        store = CredentialStore(settings.database_url, clock=clock)
    codec = TokenCodec(
        settings.secret_key,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        clock=clock,
    )
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    gate = AuthGate(codec, store=store, check_suspension=settings.gate_checks_suspension)
    sessions = SessionManager(
        store,
        codec,
        hasher,
        gate,
        access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
    )
    otp = OtpVerifier(
        store,
        hasher,
        sessions,
        ttl=timedelta(seconds=settings.otp_ttl_seconds),
        max_attempts=settings.otp_max_attempts,
        preset=settings.otp_preset,
        min_password_length=settings.min_password_length,
    )
    resets = PasswordResetFlow(
        store,
        codec,
        hasher,
        ttl=timedelta(seconds=settings.reset_token_ttl_seconds),
        min_password_length=settings.min_password_length,
    )
    return AuthComponents(
        store=store,
        codec=codec,
        hasher=hasher,
        gate=gate,
        sessions=sessions,
        otp=otp,
        resets=resets,
    )
