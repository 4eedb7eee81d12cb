"""
auth/sessions.py -- Session Engine: issue, verify, delete and sweep sessions.

Lifecycle of one session row:
    Active  (expiry_date in the future)
      -> Expired (expiry_date in the past; row kept until the sweep)
      -> Deleted (row absent)
There is no separate "revoked" state -- revocation is deletion.

Token uniqueness:
  The UNIQUE index on sessions.session_token is the source of truth. Each
  candidate token is inserted inside a SAVEPOINT; an IntegrityError for a
  token that already exists rolls back only the savepoint and a new token is
  drawn, up to token_retries extra attempts. This closes the race window a
  separate "does this token exist?" read would leave open between the check
  and the insert. With 256-bit tokens a collision means the random source is
  broken, so exhausting the bound is reported rather than looped on.

Expiry:
  expiry_date = created_at + lifetime, fixed at creation. verify() touches
  last_used_at on success but never moves expiry_date. An expired row is
  reported as EXPIRED and left untouched for sweep_expired(), so a failed
  read never turns into a write.

Orphans:
  A session whose user row is gone reports NOT_FOUND.

The clock and the token factory are injected so tests can move time and force
collisions. Naive datetimes from the clock are read as UTC.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth.credentials import CredentialStore
from auth.errors import (
    PasswordIncorrect,
    SessionCreationFailed,
    SessionExpired,
    SessionNotFound,
    StorageFailure,
    UserNotFound,
)
from auth.models import Session, TrackInformation
from auth.store import Database, _row_to_session, _track_columns, as_utc, sessions, to_iso, utcnow

logger = logging.getLogger("enigma.sessions")

DEFAULT_LIFETIME = timedelta(days=7)
DEFAULT_TOKEN_RETRIES = 10


def generate_session_token() -> str:
    """Return a new opaque session token: 32 random bytes as 64 hex chars."""
    return secrets.token_hex(32)


def _short(token: str) -> str:
    return f"{token[:8]}..."


# ---------------------------------------------------------------------------
# Verification outcome
# ---------------------------------------------------------------------------


class VerifyStatus(str, Enum):
    VALID = "valid"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


@dataclass(frozen=True)
class VerifyOutcome:
    """Result of SessionEngine.verify(). session is set only when status is VALID."""

    status: VerifyStatus
    session: Session | None = None

    @classmethod
    def valid(cls, session: Session) -> "VerifyOutcome":
        return cls(VerifyStatus.VALID, session)

    @classmethod
    def not_found(cls) -> "VerifyOutcome":
        return cls(VerifyStatus.NOT_FOUND)

    @classmethod
    def expired(cls) -> "VerifyOutcome":
        return cls(VerifyStatus.EXPIRED)

    @property
    def is_valid(self) -> bool:
        return self.status is VerifyStatus.VALID

    def unwrap_session(self) -> Session:
        """Return the session or raise SessionNotFound / SessionExpired."""
        if self.status is VerifyStatus.EXPIRED:
            raise SessionExpired()
        if self.session is None:
            raise SessionNotFound()
        return self.session


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SessionEngine:
    """Repository and state machine for sessions."""

    def __init__(
        self,
        db: Database,
        credentials: CredentialStore,
        lifetime: timedelta = DEFAULT_LIFETIME,
        token_retries: int = DEFAULT_TOKEN_RETRIES,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = generate_session_token,
    ) -> None:
        self.db = db
        self.credentials = credentials
        self.lifetime = lifetime
        self.token_retries = token_retries
        self.clock = clock
        self.token_factory = token_factory

    def create(self, username: str, password: str, track: TrackInformation | None = None) -> Session:
        """Authenticate and issue a session, all in one transaction.

        Raises UserNotFound / PasswordIncorrect on bad credentials and
        SessionCreationFailed if no unique token could be minted. On any
        error nothing is written.
        """
        track = track or TrackInformation()
        logger.debug("create session for %r (password: [REDACTED], track=%r)", username, track)
        with self.db.transaction() as conn:
            user_id = self.credentials.authenticate(conn, username, password)
            if user_id is None:
                raise PasswordIncorrect()
            token = self._insert_session(conn, user_id, track, self._now())
            session = self._load_session(conn, token)
            if session is None:
                raise StorageFailure("session row vanished inside its own transaction")
        logger.info("session %s created for %r, expires %s", _short(token), username, session.expiry_date)
        return session

    def verify(self, token: str) -> VerifyOutcome:
        """Look up a session, check expiry, and touch last_used_at if it is valid."""
        with self.db.transaction() as conn:
            session = self._load_session(conn, token)
            if session is None:
                logger.debug("session %s not found", _short(token))
                return VerifyOutcome.not_found()
            now = self._now()
            if session.is_expired(now):
                logger.debug("session %s expired at %s", _short(token), session.expiry_date)
                return VerifyOutcome.expired()
            conn.execute(
                sessions.update().where(sessions.c.session_token == token).values(last_used_at=to_iso(now))
            )
            session.last_used_at = now
        return VerifyOutcome.valid(session)

    def delete(self, token: str) -> None:
        """Delete a session by token. Deleting an unknown token is not an error."""
        with self.db.transaction() as conn:
            removed = conn.execute(sessions.delete().where(sessions.c.session_token == token)).rowcount
        logger.debug("delete session %s (%d row)", _short(token), removed)

    def sweep_expired(self) -> int:
        """Delete every session whose expiry is strictly before now. Returns the count."""
        now = to_iso(self._now())
        with self.db.transaction() as conn:
            removed = conn.execute(sessions.delete().where(sessions.c.expiry_date < now)).rowcount
        logger.info("swept %d expired sessions", removed)
        return removed

    def list_for_user(self, user_id: int) -> list[Session]:
        """Return all stored sessions of a user (active and expired), newest first."""
        with self.db.transaction() as conn:
            user = self.credentials.load_user(conn, user_id)
            rows = conn.execute(
                sessions.select().where(sessions.c.user_id == user_id).order_by(sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r, user) for r in rows]

    # ------------------------------------------------------------------
    # Connection-level helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _insert_session(self, conn: Connection, user_id: int, track: TrackInformation, now: datetime) -> str:
        attempts = self.token_retries + 1
        for attempt in range(1, attempts + 1):
            token = self.token_factory()
            try:
                with conn.begin_nested():
                    conn.execute(
                        sessions.insert().values(
                            user_id=user_id,
                            session_token=token,
                            expiry_date=to_iso(now + self.lifetime),
                            created_at=to_iso(now),
                            **_track_columns(track),
                        )
                    )
            except IntegrityError as exc:
                if not self._token_exists(conn, token):
                    raise StorageFailure(f"session insert failed: {exc}") from exc
                logger.warning("session token collision (attempt %d/%d)", attempt, attempts)
                continue
            return token
        logger.error("no unique session token after %d attempts", attempts)
        raise SessionCreationFailed(attempts)

    def _token_exists(self, conn: Connection, token: str) -> bool:
        found = conn.execute(select(sessions.c.id).where(sessions.c.session_token == token)).scalar()
        return found is not None

    def _load_session(self, conn: Connection, token: str) -> Session | None:
        row = conn.execute(sessions.select().where(sessions.c.session_token == token)).fetchone()
        if row is None:
            return None
        try:
            user = self.credentials.load_user(conn, row.user_id)
        except UserNotFound:
            logger.warning("session %s references missing user #%d", _short(token), row.user_id)
            return None
        return _row_to_session(row, user)
