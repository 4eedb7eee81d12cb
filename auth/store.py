"""
auth/store.py -- SQLAlchemy Core schema, engine ownership and transaction scope.

Pattern: Repository + Data Mapper. Database owns the Engine (the connection
pool) and is handed to CredentialStore, PermissionStore and SessionEngine at
construction. Each of those is a repository; _row_to_user / _row_to_session
here are the mappers. Nothing outside auth/ touches SQL.

Transactions:
  Database.transaction() wraps engine.begin(): commit on normal exit,
  rollback on ANY exception, connection always returned to the pool. Every
  public store operation runs inside exactly one such block, so no half-applied
  mutation survives an error or early return. SQLAlchemy errors escaping the
  block are re-raised once as StorageFailure with the original chained.

SQLite specifics (applied only when the URL is sqlite):
  - pysqlite's implicit BEGIN is disabled and an explicit BEGIN IMMEDIATE is
    emitted from the "begin" event (SQLAlchemy's documented recipe). Without
    it SAVEPOINT, used for the session-token retry, does not behave.
    IMMEDIATE takes the write lock up front, so concurrent writers queue on
    the busy timeout instead of failing when a read transaction upgrades.
  - PRAGMA foreign_keys=ON so ON DELETE CASCADE is enforced.
  - PRAGMA journal_mode=WAL so readers do not block during writes.

Timestamps are stored as fixed-width ISO 8601 UTC strings with microsecond
precision, so string comparison in SQL (sweep, expiry) is chronological.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import SingletonThreadPool

from auth.errors import StorageFailure
from auth.models import Permission, Session, TrackInformation, User

logger = logging.getLogger("enigma.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255)),
    Column("password_hash", Text, nullable=False),
    Column("password_salt", Text, nullable=False),
    Column("password_method", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("site", String(255), nullable=False),
    Column("permission", String(255), nullable=False),
    UniqueConstraint("user_id", "site", "permission", name="uq_permissions_grant"),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("session_token", String(128), nullable=False, unique=True),
    Column("expiry_date", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32)),
    Column("track_device", Text),
    Column("track_user_agent", Text),
    Column("track_ip_address", Text),
    Column("track_location", Text),
    Column("track_os", Text),
    Column("track_browser", Text),
    Column("track_screen_resolution", Text),
    Column("track_timezone", Text),
)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Return dt as an aware UTC datetime. Naive values are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Render a datetime as fixed-width UTC ISO 8601."""
    return as_utc(dt).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return as_utc(datetime.fromisoformat(value))


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _on_sqlite_connect(dbapi_conn, connection_record) -> None:
    """Per-connection SQLite setup.

    PRAGMAs are not inherited by new connections from the pool, and
    foreign_keys cannot be changed inside a transaction, so both run here
    before the driver's transaction control is taken over.
    """
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _on_sqlite_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN IMMEDIATE")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Owns the Engine and hands out scoped transactions.

    Usage:
        db = Database("sqlite:///enigma.db")
        with db.transaction() as conn:
            conn.execute(...)
        db.close()
    """

    def __init__(self, db_url: str) -> None:
        engine_args: dict = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            engine_args["connect_args"] = {"check_same_thread": False}
            # In-memory databases live only as long as a connection holds them open,
            # so keep one connection per thread.
            if ":memory:" in db_url or "mode=memory" in db_url:
                engine_args["poolclass"] = SingletonThreadPool
        self.url = db_url
        self.engine: Engine = create_engine(db_url, **engine_args)
        if is_sqlite:
            event.listen(self.engine, "connect", _on_sqlite_connect)
            event.listen(self.engine, "begin", _on_sqlite_begin)
        metadata.create_all(self.engine)
        logger.debug("database ready: %s", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside one transaction; commit on exit, roll back on error."""
        try:
            with self.engine.begin() as conn:
                logger.debug("BEGIN TRANSACTION")
                yield conn
            logger.debug("COMMIT TRANSACTION")
        except SQLAlchemyError as exc:
            logger.debug("ROLLBACK TRANSACTION (%s)", type(exc).__name__)
            raise StorageFailure(f"storage error: {exc}") from exc

    def ping(self) -> bool:
        """Return True if a trivial query succeeds. Used by the health endpoint."""
        try:
            with self.transaction() as conn:
                conn.exec_driver_sql("SELECT 1")
        except StorageFailure:
            logger.exception("database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_permission(row) -> Permission:
    return Permission(site=row.site, permission=row.permission)


def _row_to_user(row, grants: list[Permission]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        created_at=row.created_at,
        permissions=grants,
    )


def _row_to_track(row) -> TrackInformation:
    return TrackInformation(**{name: getattr(row, f"track_{name}") for name in TrackInformation.field_names()})


def _track_columns(track: TrackInformation) -> dict[str, str | None]:
    return {f"track_{name}": getattr(track, name) for name in TrackInformation.field_names()}


def _row_to_session(row, user: User) -> Session:
    return Session(
        user=user,
        session_token=row.session_token,
        expiry_date=from_iso(row.expiry_date),
        created_at=from_iso(row.created_at),
        last_used_at=from_iso(row.last_used_at),
        track=_row_to_track(row),
    )
