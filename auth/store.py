"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_refresh_token / _row_to_reset_token are the mappers.
Flow and route code never touches SQL directly.

Transactions:
  transaction() yields a Connection inside engine.begin(). Every method takes
  an optional conn; when given, the method joins that transaction instead of
  opening its own. Any exception raised inside the block -- including a
  domain failure such as SessionRevoked -- rolls the whole block back.

  Single-use guarantees are compare-and-set UPDATEs ("... WHERE revoked_at IS
  NULL") whose rowcount tells the caller whether it won the race. Inside a
  multi-statement transaction the CAS write is issued first so SQLite takes
  the write lock up front instead of upgrading a read lock mid-transaction.

  Connectivity failures (OperationalError, InterfaceError) surface as
  StoreUnavailable. IntegrityError is left to the caller, which knows what a
  duplicate means in its context.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision) so SQL string comparison orders them correctly.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/slotly_auth.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import InterfaceError, OperationalError

from auth.errors import StoreUnavailable
from auth.models import Identity, PasswordResetToken, RefreshToken, Role, User

logger = logging.getLogger("slotly.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'slotly_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True),
    Column("phone", String(32), unique=True),
    Column("name", String(255)),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default=Role.CUSTOMER.value),
    Column("suspended", Boolean, nullable=False, server_default="0"),
    Column("suspended_until", String(32)),
    Column("otp_hash", Text),
    Column("otp_expires_at", String(32)),
    Column("otp_attempts", Integer, nullable=False, server_default="0"),
    Column("otp_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("jti", String(64), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Column("replaced_by", String(64)),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Column("invalidated_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new connection.

    WAL lets readers proceed while a writer holds the lock. The busy timeout
    makes a second writer wait for the lock instead of failing immediately
    with "database is locked". PRAGMAs are per-connection, so this runs on
    each pool checkout of a fresh DBAPI connection.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User, RefreshToken and PasswordResetToken records.

    One instance (one Engine and its pool) is shared by every component and
    every request thread.

    Usage:
        store = CredentialStore("sqlite:///auth.db")
        with store.transaction() as conn:
            store.revoke_all_refresh_tokens(user_id, conn=conn)
            store.update_user(user_id, conn=conn, hashed_password=new_hash)
        store.close()
    """

    _USER_FIELDS: set = {
        "email",
        "phone",
        "name",
        "hashed_password",
        "role",
        "suspended",
        "suspended_until",
        "otp_hash",
        "otp_expires_at",
        "otp_attempts",
        "otp_verified",
    }

    def __init__(self, db_url: str = _DEFAULT_DB_URL, clock: Callable[[], datetime] = _utcnow) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 30
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self._clock = clock
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Transaction scopes
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Open an atomic unit of work. Commits on clean exit, rolls back on any exception."""
        try:
            with self.engine.begin() as conn:
                yield conn
        except (OperationalError, InterfaceError) as exc:
            logger.error("Credential store unavailable: %s", exc.orig)
            raise StoreUnavailable(detail=type(exc).__name__) from exc

    @contextmanager
    def _scope(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.transaction() as own:
            yield own

    def now(self) -> datetime:
        return self._clock()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._scope(None) as conn:
                conn.execute(text("SELECT 1"))
        except StoreUnavailable:
            return False
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, conn: Connection | None = None) -> int:
        """Insert a new user and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email or phone is taken.
        """
        with self._scope(conn) as c:
            result = c.execute(
                _users.insert().values(
                    email=user.email,
                    phone=user.phone,
                    name=user.name,
                    hashed_password=user.hashed_password,
                    role=Role(user.role).value,
                    suspended=user.suspended,
                    suspended_until=_iso(user.suspended_until),
                    otp_hash=user.otp_hash,
                    otp_expires_at=_iso(user.otp_expires_at),
                    otp_attempts=user.otp_attempts,
                    otp_verified=user.otp_verified,
                    created_at=_iso(self._clock()),
                )
            )
            return result.inserted_primary_key[0]

    def get_user_by_id(self, user_id: int, conn: Connection | None = None) -> User | None:
        with self._scope(conn) as c:
            row = c.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_identity(self, identity: Identity, conn: Connection | None = None) -> User | None:
        """Look up a user by normalized email or phone. Returns None if not found."""
        column = _users.c.email if identity.kind == "email" else _users.c.phone
        with self._scope(conn) as c:
            row = c.execute(_users.select().where(column == identity.value)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, conn: Connection | None = None, **fields) -> bool:
        """Update mutable user fields. Returns True if a row was updated.

        Unknown field names raise ValueError rather than being ignored.
        """
        unknown = set(fields) - self._USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = {k: _to_column(v) for k, v in fields.items()}
        with self._scope(conn) as c:
            result = c.execute(_users.update().where(_users.c.id == user_id).values(**values))
        return result.rowcount > 0

    def mark_otp_verified(
        self, user_id: int, otp_hash: str, now: datetime, conn: Connection | None = None
    ) -> bool:
        """Flip otp_verified and clear the OTP fields, only if the checked code still stands.

        The row must be unverified, still hold otp_hash and not be expired at
        now. Returns False when the code the caller
        checked is no longer live.
        """
        with self._scope(conn) as c:
            result = c.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.otp_verified == False)  # noqa: E712
                    & (_users.c.otp_hash == otp_hash)
                    & (_users.c.otp_expires_at > _iso(now))
                )
                .values(otp_verified=True, otp_hash=None, otp_expires_at=None, otp_attempts=0)
            )
        return result.rowcount > 0

    def clear_otp(self, user_id: int, conn: Connection | None = None) -> None:
        """Drop the pending OTP so only a fresh signup initiation yields a new code."""
        with self._scope(conn) as c:
            c.execute(_users.update().where(_users.c.id == user_id).values(otp_hash=None, otp_expires_at=None))

    def record_otp_failure(self, user_id: int, max_attempts: int, conn: Connection | None = None) -> int:
        """Count a wrong OTP. Clears the pending code once max_attempts is reached.

        Returns the attempt count after this failure.
        """
        with self._scope(conn) as c:
            c.execute(
                _users.update().where(_users.c.id == user_id).values(otp_attempts=_users.c.otp_attempts + 1)
            )
            attempts = c.execute(select(_users.c.otp_attempts).where(_users.c.id == user_id)).scalar() or 0
            if attempts >= max_attempts:
                c.execute(_users.update().where(_users.c.id == user_id).values(otp_hash=None, otp_expires_at=None))
        return attempts

    def set_suspension(
        self,
        user_id: int,
        suspended: bool,
        until: datetime | None = None,
        conn: Connection | None = None,
    ) -> bool:
        with self._scope(conn) as c:
            result = c.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(suspended=suspended, suspended_until=_iso(until) if suspended else None)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, token: RefreshToken, conn: Connection | None = None) -> None:
        with self._scope(conn) as c:
            c.execute(
                _refresh_tokens.insert().values(
                    jti=token.jti,
                    user_id=token.user_id,
                    issued_at=_iso(token.issued_at),
                    expires_at=_iso(token.expires_at),
                    revoked_at=_iso(token.revoked_at),
                    replaced_by=token.replaced_by,
                )
            )

    def find_refresh_token(self, jti: str, conn: Connection | None = None) -> RefreshToken | None:
        with self._scope(conn) as c:
            row = c.execute(_refresh_tokens.select().where(_refresh_tokens.c.jti == jti)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke_refresh_token(self, jti: str, conn: Connection | None = None) -> bool:
        """Compare-and-set revoke. Returns True only for the caller that revoked it."""
        with self._scope(conn) as c:
            result = c.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.jti == jti) & _refresh_tokens.c.revoked_at.is_(None))
                .values(revoked_at=_iso(self._clock()))
            )
        return result.rowcount > 0

    def rotate_refresh_token(self, old_jti: str, new: RefreshToken, conn: Connection | None = None) -> bool:
        """Revoke old_jti and insert its successor in one step.

        Returns False, inserting nothing, if old_jti was already revoked --
        the caller lost the race and must treat the token as revoked.
        """
        with self._scope(conn) as c:
            result = c.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.jti == old_jti) & _refresh_tokens.c.revoked_at.is_(None))
                .values(revoked_at=_iso(self._clock()), replaced_by=new.jti)
            )
            if result.rowcount == 0:
                return False
            self.create_refresh_token(new, conn=c)
        return True

    def revoke_all_refresh_tokens(self, user_id: int, conn: Connection | None = None) -> int:
        """Revoke every live refresh token of user_id in one statement. Returns the count."""
        with self._scope(conn) as c:
            result = c.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & _refresh_tokens.c.revoked_at.is_(None))
                .values(revoked_at=_iso(self._clock()))
            )
        return result.rowcount

    def list_refresh_tokens(self, user_id: int, conn: Connection | None = None) -> list[RefreshToken]:
        """All refresh tokens of a user, newest first (audit view)."""
        with self._scope(conn) as c:
            rows = c.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.issued_at.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def create_password_reset_token(self, token: PasswordResetToken, conn: Connection | None = None) -> int:
        with self._scope(conn) as c:
            result = c.execute(
                _reset_tokens.insert().values(
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    expires_at=_iso(token.expires_at),
                    created_at=_iso(self._clock()),
                )
            )
            return result.inserted_primary_key[0]

    def find_password_reset_token(self, token_hash: str, conn: Connection | None = None) -> PasswordResetToken | None:
        """Look up a reset token by its HMAC. O(1) via the UNIQUE index."""
        with self._scope(conn) as c:
            row = c.execute(_reset_tokens.select().where(_reset_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def mark_password_reset_used(self, token_id: int, conn: Connection | None = None) -> bool:
        """Compare-and-set consume. Returns False if the token was already used or invalidated."""
        with self._scope(conn) as c:
            result = c.execute(
                _reset_tokens.update()
                .where(
                    (_reset_tokens.c.id == token_id)
                    & _reset_tokens.c.used_at.is_(None)
                    & _reset_tokens.c.invalidated_at.is_(None)
                )
                .values(used_at=_iso(self._clock()))
            )
        return result.rowcount > 0

    def invalidate_other_password_reset_tokens(
        self, user_id: int, except_id: int, conn: Connection | None = None
    ) -> int:
        """Invalidate every outstanding sibling of except_id. Returns the count."""
        with self._scope(conn) as c:
            result = c.execute(
                _reset_tokens.update()
                .where(
                    (_reset_tokens.c.user_id == user_id)
                    & (_reset_tokens.c.id != except_id)
                    & _reset_tokens.c.used_at.is_(None)
                    & _reset_tokens.c.invalidated_at.is_(None)
                )
                .values(invalidated_at=_iso(self._clock()))
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self, before: datetime) -> dict[str, int]:
        """Delete refresh and reset tokens that were already dead before `before`.

        Only rows that can never validate again are removed: expired, revoked,
        used or invalidated before the cutoff. Returns per-table counts.
        """
        cutoff = _iso(before)
        rt = _refresh_tokens.c
        pr = _reset_tokens.c
        with self._scope(None) as c:
            refresh = c.execute(
                _refresh_tokens.delete().where((rt.expires_at < cutoff) | (rt.revoked_at < cutoff))
            ).rowcount
            resets = c.execute(
                _reset_tokens.delete().where(
                    (pr.expires_at < cutoff) | (pr.used_at < cutoff) | (pr.invalidated_at < cutoff)
                )
            ).rowcount
        return {"refresh_tokens": refresh, "password_reset_tokens": resets}

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _to_column(value):
    if isinstance(value, Role):
        return value.value
    if isinstance(value, datetime):
        return _iso(value)
    return value


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        phone=row.phone,
        name=row.name,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        suspended=bool(row.suspended),
        suspended_until=_parse(row.suspended_until),
        otp_hash=row.otp_hash,
        otp_expires_at=_parse(row.otp_expires_at),
        otp_attempts=row.otp_attempts or 0,
        otp_verified=bool(row.otp_verified),
        created_at=_parse(row.created_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        jti=row.jti,
        user_id=row.user_id,
        issued_at=_parse(row.issued_at),
        expires_at=_parse(row.expires_at),
        revoked_at=_parse(row.revoked_at),
        replaced_by=row.replaced_by,
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=_parse(row.expires_at),
        used_at=_parse(row.used_at),
        invalidated_at=_parse(row.invalidated_at),
        created_at=_parse(row.created_at),
    )
