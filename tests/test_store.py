"""Unit tests for auth/store.py -- CredentialStore persistence and CAS writes.

Covers:
- users round-trip by id, email and phone; duplicates raise IntegrityError
- update_user() rejects unknown fields
- record_otp_failure() counts and clears the code at the limit
- revoke_refresh_token() / rotate_refresh_token() are compare-and-set
- transaction() rolls back every write when the block raises
- reset token sibling invalidation and single-use marking
- purge_expired() only removes long-dead rows
- connectivity failures surface as StoreUnavailable
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError

from auth.errors import StoreUnavailable
from auth.models import Identity, PasswordResetToken, RefreshToken, Role, User


def _user(email: str | None = "a@example.com", phone: str | None = None) -> User:
    return User(role=Role.CUSTOMER, hashed_password="x", email=email, phone=phone, name="A")


def _refresh(store, user_id: int, jti: str, days: int = 30) -> RefreshToken:
    now = store.now()
    return RefreshToken(jti=jti, user_id=user_id, issued_at=now, expires_at=now + timedelta(days=days))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def test_user_lookup_by_id_and_identity(store):
    uid = store.create_user(_user(email="a@example.com", phone="+15551234567"))
    by_id = store.get_user_by_id(uid)
    assert by_id.email == "a@example.com"
    assert by_id.role is Role.CUSTOMER
    assert by_id.otp_verified is False
    assert by_id.created_at == store.now()
    assert store.get_user_by_identity(Identity("email", "a@example.com")).id == uid
    assert store.get_user_by_identity(Identity("phone", "+15551234567")).id == uid
    assert store.get_user_by_identity(Identity("email", "nobody@example.com")) is None
    assert store.get_user_by_id(9999) is None


def test_duplicate_email_raises_integrity_error(store):
    store.create_user(_user())
    with pytest.raises(IntegrityError):
        store.create_user(_user())


def test_update_user_persists_datetimes_and_roles(store, clock):
    uid = store.create_user(_user())
    until = clock() + timedelta(hours=2)
    assert store.update_user(uid, role=Role.STAFF, suspended=True, suspended_until=until)
    user = store.get_user_by_id(uid)
    assert user.role is Role.STAFF
    assert user.suspended is True
    assert user.suspended_until == until


def test_update_user_rejects_unknown_fields(store):
    uid = store.create_user(_user())
    with pytest.raises(ValueError):
        store.update_user(uid, is_admin=True)


def test_mark_otp_verified_only_once(store):
    uid = store.create_user(_user())
    store.update_user(uid, otp_hash="h", otp_expires_at=store.now() + timedelta(minutes=5))
    assert store.mark_otp_verified(uid, "h", store.now()) is True
    assert store.mark_otp_verified(uid, "h", store.now()) is False
    user = store.get_user_by_id(uid)
    assert user.otp_verified is True
    assert user.otp_hash is None
    assert user.otp_expires_at is None


def test_mark_otp_verified_needs_the_live_code(store, clock):
    uid = store.create_user(_user())
    store.update_user(uid, otp_hash="h", otp_expires_at=store.now() + timedelta(minutes=5))
    assert store.mark_otp_verified(uid, "other", store.now()) is False

    clock.advance(minutes=5)
    assert store.mark_otp_verified(uid, "h", store.now()) is False

    store.update_user(uid, otp_expires_at=store.now() + timedelta(minutes=5))
    store.clear_otp(uid)
    assert store.mark_otp_verified(uid, "h", store.now()) is False
    assert store.get_user_by_id(uid).otp_verified is False


def test_record_otp_failure_clears_code_at_limit(store):
    uid = store.create_user(_user())
    store.update_user(uid, otp_hash="h", otp_expires_at=store.now() + timedelta(minutes=5))
    assert store.record_otp_failure(uid, max_attempts=3) == 1
    assert store.record_otp_failure(uid, max_attempts=3) == 2
    assert store.get_user_by_id(uid).otp_hash == "h"
    assert store.record_otp_failure(uid, max_attempts=3) == 3
    assert store.get_user_by_id(uid).otp_hash is None


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


def test_revoke_refresh_token_is_compare_and_set(store):
    uid = store.create_user(_user())
    store.create_refresh_token(_refresh(store, uid, "j1"))
    assert store.revoke_refresh_token("j1") is True
    assert store.revoke_refresh_token("j1") is False
    assert store.find_refresh_token("j1").revoked_at == store.now()
    assert store.revoke_refresh_token("missing") is False


def test_rotate_links_successor_and_refuses_revoked(store):
    uid = store.create_user(_user())
    store.create_refresh_token(_refresh(store, uid, "j1"))
    assert store.rotate_refresh_token("j1", _refresh(store, uid, "j2")) is True
    old = store.find_refresh_token("j1")
    assert old.revoked_at is not None
    assert old.replaced_by == "j2"
    assert store.find_refresh_token("j2").revoked_at is None

    # j1 is dead: a second rotation inserts nothing.
    assert store.rotate_refresh_token("j1", _refresh(store, uid, "j3")) is False
    assert store.find_refresh_token("j3") is None


def test_revoke_all_counts_only_live_tokens(store):
    uid = store.create_user(_user())
    other = store.create_user(_user(email="b@example.com"))
    for jti in ("a", "b", "c"):
        store.create_refresh_token(_refresh(store, uid, jti))
    store.create_refresh_token(_refresh(store, other, "o"))
    store.revoke_refresh_token("a")
    assert store.revoke_all_refresh_tokens(uid) == 2
    assert store.find_refresh_token("o").revoked_at is None
    assert [t.jti for t in store.list_refresh_tokens(other)] == ["o"]


def test_transaction_rolls_back_on_error(store):
    uid = store.create_user(_user())
    store.create_refresh_token(_refresh(store, uid, "j1"))
    with pytest.raises(RuntimeError):
        with store.transaction() as conn:
            store.revoke_refresh_token("j1", conn=conn)
            store.update_user(uid, conn=conn, hashed_password="changed")
            raise RuntimeError("boom")
    assert store.find_refresh_token("j1").revoked_at is None
    assert store.get_user_by_id(uid).hashed_password == "x"


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def test_reset_token_single_use_and_siblings(store):
    uid = store.create_user(_user())
    expires = store.now() + timedelta(minutes=15)
    a = store.create_password_reset_token(PasswordResetToken(user_id=uid, token_hash="ha", expires_at=expires))
    b = store.create_password_reset_token(PasswordResetToken(user_id=uid, token_hash="hb", expires_at=expires))
    c = store.create_password_reset_token(PasswordResetToken(user_id=uid, token_hash="hc", expires_at=expires))

    assert store.mark_password_reset_used(a) is True
    assert store.mark_password_reset_used(a) is False
    assert store.invalidate_other_password_reset_tokens(uid, except_id=a) == 2
    assert store.find_password_reset_token("hb").invalidated_at is not None
    assert store.find_password_reset_token("ha").invalidated_at is None
    # Invalidated tokens cannot be marked used.
    assert store.mark_password_reset_used(b) is False
    assert store.mark_password_reset_used(c) is False


def test_duplicate_reset_hash_rejected(store):
    uid = store.create_user(_user())
    token = PasswordResetToken(user_id=uid, token_hash="same", expires_at=store.now())
    store.create_password_reset_token(token)
    with pytest.raises(IntegrityError):
        store.create_password_reset_token(token)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


def test_purge_removes_only_long_dead_rows(store, clock):
    uid = store.create_user(_user())
    store.create_refresh_token(_refresh(store, uid, "short", days=1))
    store.create_refresh_token(_refresh(store, uid, "live", days=90))
    store.create_refresh_token(_refresh(store, uid, "revoked", days=90))
    store.revoke_refresh_token("revoked")
    store.create_password_reset_token(
        PasswordResetToken(user_id=uid, token_hash="old", expires_at=store.now() + timedelta(minutes=15))
    )

    clock.advance(days=10)
    counts = store.purge_expired(store.now() - timedelta(days=5))

    assert counts == {"refresh_tokens": 2, "password_reset_tokens": 1}
    assert store.find_refresh_token("live") is not None
    assert store.find_refresh_token("short") is None
    assert store.find_refresh_token("revoked") is None


def test_purge_keeps_recently_dead_rows(store, clock):
    uid = store.create_user(_user())
    store.create_refresh_token(_refresh(store, uid, "j", days=1))
    clock.advance(days=2)
    assert store.purge_expired(store.now() - timedelta(days=30))["refresh_tokens"] == 0
    assert store.find_refresh_token("j") is not None


def test_unreachable_database_raises_store_unavailable(store, tmp_path):
    assert store.ping() is True
    store.engine.dispose()
    store.engine = create_engine(f"sqlite:///{tmp_path / 'missing-dir' / 'x.db'}")
    assert store.ping() is False
    with pytest.raises(StoreUnavailable) as exc_info:
        store.get_user_by_id(1)
    assert exc_info.value.status_code == 503
