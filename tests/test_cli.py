"""Unit tests for main.py -- operator commands.

Covers:
- seed_admin() creates a verified ADMIN who can log in
- seed_admin() is idempotent and never touches an existing account
- seed_admin() enforces the password policy
- purge() reports per-table counts
- main() without a command prints help and exits 1
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.errors import WeakPassword
from auth.models import Identity, RefreshToken, Role
from main import main, purge, seed_admin


def test_seed_admin_creates_verified_admin(auth, capsys):
    uid = seed_admin(auth, "Root@Example.com", "adminPass123", "Sudo Admin")
    user = auth.store.get_user_by_id(uid)
    assert user.role is Role.ADMIN
    assert user.otp_verified is True
    assert user.email == "root@example.com"
    assert "Admin seeded" in capsys.readouterr().out

    tokens, _ = auth.sessions.login(Identity("email", "root@example.com"), "adminPass123")
    assert auth.gate.authenticate(tokens.access_token).role is Role.ADMIN


def test_seed_admin_is_idempotent(auth, make_user):
    existing = make_user("root@example.com", password="keepThis123")
    uid = seed_admin(auth, "root@example.com", "otherPass456", "Someone")
    assert uid == existing.id
    user = auth.store.get_user_by_id(uid)
    assert user.role is Role.CUSTOMER
    assert auth.hasher.verify("keepThis123", user.hashed_password)


def test_seed_admin_rejects_weak_password(auth):
    with pytest.raises(WeakPassword):
        seed_admin(auth, "root@example.com", "weak", None)


def test_purge_reports_counts(auth, make_user, clock, capsys):
    user = make_user("user@example.com")
    now = clock()
    auth.store.create_refresh_token(
        RefreshToken(jti="old", user_id=user.id, issued_at=now, expires_at=now + timedelta(days=1))
    )
    clock.advance(days=40)
    counts = purge(auth, retention_days=30)
    assert counts == {"refresh_tokens": 1, "password_reset_tokens": 0}
    assert "Purged 1 refresh token(s)" in capsys.readouterr().out


def test_main_without_command_prints_help(capsys):
    assert main([]) == 1
    assert "seed-admin" in capsys.readouterr().out
