"""
tests/test_api_admin.py -- Integration tests for /api/v1/admin/* endpoints.

Covers:
  - admin routes need a bearer token (401) and the ADMIN role (403)
  - suspension revokes every session and blocks login until lifted
  - timed suspensions must end in the future; naive timestamps are UTC
  - admins cannot suspend themselves
  - unknown users are 404
  - session audit view lists rotated tokens with their successors
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.models import Role, User

LOGIN = "/api/v1/auth/login"
REFRESH = "/api/v1/auth/refresh"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _suspension_url(user_id: int) -> str:
    return f"/api/v1/admin/users/{user_id}/suspension"


def _make_user(auth, email: str, role: Role = Role.CUSTOMER) -> int:
    user = User(role=role, hashed_password=auth.hasher.hash("goodPass1"), email=email, otp_verified=True)
    return auth.store.create_user(user)


def _login(client, email: str) -> dict:
    resp = client.post(LOGIN, json={"identity": email, "password": "goodPass1"})
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


def test_admin_routes_require_token(api_client):
    client, auth, _ = api_client
    uid = _make_user(auth, "target-noauth@example.com")
    resp = client.patch(_suspension_url(uid))
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "auth_missing"


def test_admin_routes_require_admin_role(api_client):
    client, auth, _ = api_client
    uid = _make_user(auth, "target-staff@example.com")
    _make_user(auth, "staff@example.com", role=Role.STAFF)
    staff = _login(client, "staff@example.com")
    for resp in (
        client.patch(_suspension_url(uid), headers=_bearer(staff["accessToken"])),
        client.delete(_suspension_url(uid), headers=_bearer(staff["accessToken"])),
        client.get(f"/api/v1/admin/users/{uid}/sessions", headers=_bearer(staff["accessToken"])),
    ):
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"


# ---------------------------------------------------------------------------
# Suspension
# ---------------------------------------------------------------------------


def test_suspend_and_unsuspend(api_client):
    client, auth, admin_token = api_client
    uid = _make_user(auth, "suspend-me@example.com")
    pair = _login(client, "suspend-me@example.com")

    resp = client.patch(_suspension_url(uid), headers=_bearer(admin_token))
    assert resp.status_code == 200
    assert resp.json()["suspended"] is True
    assert resp.json()["suspendedUntil"] is None

    refresh = client.post(REFRESH, json={"refreshToken": pair["refreshToken"]})
    assert refresh.status_code == 401
    assert refresh.json()["error"]["code"] == "session_revoked"
    login = client.post(LOGIN, json={"identity": "suspend-me@example.com", "password": "goodPass1"})
    assert login.status_code == 403
    assert login.json()["error"]["code"] == "account_suspended"

    resp = client.delete(_suspension_url(uid), headers=_bearer(admin_token))
    assert resp.status_code == 200
    assert resp.json()["suspended"] is False
    _login(client, "suspend-me@example.com")


def test_timed_suspension(api_client):
    client, auth, admin_token = api_client
    uid = _make_user(auth, "timed@example.com")
    until = (datetime.now(timezone.utc) + timedelta(days=2)).replace(microsecond=0)

    resp = client.patch(
        _suspension_url(uid),
        json={"suspendedUntil": until.replace(tzinfo=None).isoformat()},
        headers=_bearer(admin_token),
    )
    assert resp.status_code == 200
    assert datetime.fromisoformat(resp.json()["suspendedUntil"]) == until


def test_suspension_in_the_past_rejected(api_client):
    client, auth, admin_token = api_client
    uid = _make_user(auth, "past@example.com")
    past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
    resp = client.patch(_suspension_url(uid), json={"suspendedUntil": past}, headers=_bearer(admin_token))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_until"
    assert auth.store.get_user_by_id(uid).suspended is False


def test_admin_cannot_suspend_self(api_client):
    client, _, admin_token = api_client
    admin_id = client.get("/api/v1/auth/me", headers=_bearer(admin_token)).json()["id"]
    resp = client.patch(_suspension_url(admin_id), headers=_bearer(admin_token))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "self_suspension"


def test_unknown_user_is_404(api_client):
    client, _, admin_token = api_client
    for resp in (
        client.patch(_suspension_url(999999), headers=_bearer(admin_token)),
        client.delete(_suspension_url(999999), headers=_bearer(admin_token)),
        client.get("/api/v1/admin/users/999999/sessions", headers=_bearer(admin_token)),
    ):
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "user_not_found"


# ---------------------------------------------------------------------------
# Session audit
# ---------------------------------------------------------------------------


def test_session_audit_shows_rotation(api_client):
    client, auth, admin_token = api_client
    uid = _make_user(auth, "audit@example.com")
    pair = _login(client, "audit@example.com")
    client.post(REFRESH, json={"refreshToken": pair["refreshToken"]})

    resp = client.get(f"/api/v1/admin/users/{uid}/sessions", headers=_bearer(admin_token))
    assert resp.status_code == 200
    rows = resp.json()
    assert len(rows) == 2
    revoked = [r for r in rows if r["revokedAt"] is not None]
    live = [r for r in rows if r["revokedAt"] is None]
    assert len(revoked) == 1 and len(live) == 1
    assert revoked[0]["replacedBy"] == live[0]["jti"]
