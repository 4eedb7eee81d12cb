"""
auth/credentials.py -- Credential Store: user records and password verification.

Public methods each run in their own transaction. The connection-level
methods (load_user, authenticate, ...) take an open Connection so the
SessionEngine can compose them inside its own single transaction.

not-found vs wrong-password:
  authenticate() raises UserNotFound for an unknown username and returns None
  for a wrong password. The distinction is kept for logs; AuthService collapses
  both into LoginFailed before anything reaches a client.

Deletion:
  delete_by_username() removes the user's sessions and permissions explicitly
  in the same transaction before the user row. The FK ON DELETE CASCADE would
  do the same on SQLite/PostgreSQL; the explicit deletes make the behaviour
  independent of whether the backend enforces foreign keys.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth import passwords
from auth.errors import DuplicateUsername, UserNotFound
from auth.models import User
from auth.passwords import HashedPassword
from auth.permissions import PermissionStore
from auth.store import Database, _row_to_user, permissions, sessions, to_iso, users, utcnow

logger = logging.getLogger("enigma.auth")


class CredentialStore:
    """Repository for users and their password material."""

    def __init__(self, db: Database, grants: PermissionStore, bcrypt_rounds: int = passwords.DEFAULT_ROUNDS) -> None:
        self.db = db
        self.grants = grants
        self.bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self, username: str, password: str, email: str | None = None) -> int:
        """Hash the password with a fresh salt and insert the user. Returns the new id.

        Raises DuplicateUsername if the username is taken.
        """
        hashed = passwords.hash_password(password, rounds=self.bcrypt_rounds)
        return self.create_with_hash(username, hashed, email=email)

    def create_with_hash(self, username: str, hashed: HashedPassword, email: str | None = None) -> int:
        """Insert a user whose password is already hashed (imports, migrations)."""
        passwords.check_method(hashed.password_method)
        logger.debug("create user %r (method=%s)", username, hashed.password_method)
        with self.db.transaction() as conn:
            try:
                result = conn.execute(
                    users.insert().values(
                        username=username,
                        email=email,
                        password_hash=hashed.password_hash,
                        password_salt=hashed.password_salt,
                        password_method=hashed.password_method,
                        created_at=to_iso(utcnow()),
                    )
                )
            except IntegrityError as exc:
                raise DuplicateUsername(username) from exc
            user_id = result.inserted_primary_key[0]
        logger.info("created user %r (#%d)", username, user_id)
        return user_id

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_credentials(self, username: str, password: str) -> int | None:
        """Return the user id on a password match, None on mismatch.

        Raises UserNotFound if no such username exists.
        """
        with self.db.transaction() as conn:
            return self.authenticate(conn, username, password)

    def authenticate(self, conn: Connection, username: str, password: str) -> int | None:
        row = conn.execute(
            select(
                users.c.id,
                users.c.password_hash,
                users.c.password_salt,
                users.c.password_method,
            ).where(users.c.username == username)
        ).fetchone()
        if row is None:
            passwords.dummy_verify(password, rounds=self.bcrypt_rounds)
            raise UserNotFound(username=username)
        stored = HashedPassword(row.password_hash, row.password_salt, row.password_method)
        if not passwords.verify_password(password, stored):
            return None
        return row.id

    # ------------------------------------------------------------------
    # Reads (always fully hydrated)
    # ------------------------------------------------------------------

    def load_user(self, conn: Connection, user_id: int) -> User:
        row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        if row is None:
            raise UserNotFound(user_id=user_id)
        return _row_to_user(row, self.grants.load_grants(conn, row.id))

    def get_by_id(self, user_id: int) -> User:
        with self.db.transaction() as conn:
            return self.load_user(conn, user_id)

    def get_by_username(self, username: str) -> User:
        with self.db.transaction() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
            if row is None:
                raise UserNotFound(username=username)
            return _row_to_user(row, self.grants.load_grants(conn, row.id))

    def list_all(self) -> list[User]:
        """Return every user ordered by username, each with its full grant list."""
        with self.db.transaction() as conn:
            rows = conn.execute(users.select().order_by(users.c.username)).fetchall()
            grants = self.grants.load_all_grants(conn)
        return [_row_to_user(r, grants.get(r.id, [])) for r in rows]

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_by_username(self, username: str) -> None:
        """Delete a user together with all of its sessions and permissions.

        Raises UserNotFound if the username does not exist.
        """
        with self.db.transaction() as conn:
            user_id = conn.execute(select(users.c.id).where(users.c.username == username)).scalar()
            if user_id is None:
                raise UserNotFound(username=username)
            removed_sessions = conn.execute(sessions.delete().where(sessions.c.user_id == user_id)).rowcount
            removed_grants = conn.execute(permissions.delete().where(permissions.c.user_id == user_id)).rowcount
            conn.execute(users.delete().where(users.c.id == user_id))
        logger.info(
            "deleted user %r (#%d): %d sessions, %d permissions",
            username,
            user_id,
            removed_sessions,
            removed_grants,
        )
