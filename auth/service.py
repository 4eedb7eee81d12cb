"""
auth/service.py -- Authorization Facade: the single surface api/ and main.py use.

AuthService composes CredentialStore, PermissionStore and SessionEngine over
one Database. It adds exactly one behaviour of its own: create_session()
collapses every credential failure (unknown username, wrong password, broken
salt) into LoginFailed so a client cannot tell which one happened. The
specific reason is logged and kept as __cause__.

Usage:
    service = AuthService.from_settings(get_settings())
    uid = service.create_user("alice", "secret1")
    session = service.create_session("alice", "secret1", TrackInformation(device="laptop"))
    service.verify_session(session.session_token)
    service.close()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from auth import passwords
from auth.credentials import CredentialStore
from auth.errors import InvalidCredential, LoginFailed, UserNotFound
from auth.models import Session, TrackInformation, User
from auth.permissions import PermissionStore
from auth.sessions import DEFAULT_LIFETIME, DEFAULT_TOKEN_RETRIES, SessionEngine, VerifyOutcome, generate_session_token
from auth.store import Database, utcnow

logger = logging.getLogger("enigma.auth")


class AuthService:
    def __init__(
        self,
        db: Database,
        *,
        lifetime: timedelta = DEFAULT_LIFETIME,
        token_retries: int = DEFAULT_TOKEN_RETRIES,
        bcrypt_rounds: int = passwords.DEFAULT_ROUNDS,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = generate_session_token,
    ) -> None:
        self.db = db
        self.permissions = PermissionStore(db)
        self.credentials = CredentialStore(db, self.permissions, bcrypt_rounds=bcrypt_rounds)
        self.sessions = SessionEngine(
            db,
            self.credentials,
            lifetime=lifetime,
            token_retries=token_retries,
            clock=clock,
            token_factory=token_factory,
        )

    @classmethod
    def from_settings(cls, settings, db: Database | None = None) -> "AuthService":
        """Build a service from core.config.Settings, opening the configured database."""
        return cls(
            db or Database(settings.database_url),
            lifetime=timedelta(days=settings.session_lifetime_days),
            token_retries=settings.session_token_retries,
            bcrypt_rounds=settings.bcrypt_rounds,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, username: str, password: str, track: TrackInformation | None = None) -> Session:
        """Log in. Raises LoginFailed for any credential problem, whatever the cause."""
        try:
            return self.sessions.create(username, password, track)
        except (UserNotFound, InvalidCredential) as exc:
            logger.warning("login failed for %r: %s", username, exc)
            raise LoginFailed() from exc

    def verify_session(self, token: str) -> Session:
        """Return the session for token or raise SessionNotFound / SessionExpired."""
        return self.sessions.verify(token).unwrap_session()

    def check_session(self, token: str) -> VerifyOutcome:
        """Like verify_session() but returns the outcome instead of raising."""
        return self.sessions.verify(token)

    def delete_session(self, token: str) -> None:
        self.sessions.delete(token)

    def sweep_expired_sessions(self) -> int:
        return self.sessions.sweep_expired()

    def list_sessions(self, username: str) -> list[Session]:
        user = self.credentials.get_by_username(username)
        return self.sessions.list_for_user(user.id)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username: str, password: str, email: str | None = None) -> int:
        return self.credentials.create(username, password, email=email)

    def import_user(self, username: str, phc_hash: str, email: str | None = None) -> int:
        """Create a user from a password hash exported by an older deployment."""
        return self.credentials.create_with_hash(username, passwords.from_phc(phc_hash), email=email)

    def delete_user(self, username: str) -> None:
        self.credentials.delete_by_username(username)

    def list_users(self) -> list[User]:
        return self.credentials.list_all()

    def get_user_by_username(self, username: str) -> User:
        return self.credentials.get_by_username(username)

    def get_user_by_id(self, user_id: int) -> User:
        return self.credentials.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def add_permission(self, user_id: int, site: str, permission: str) -> None:
        self.permissions.add(user_id, site, permission)

    def remove_permission(self, user_id: int, site: str, permission: str) -> None:
        self.permissions.remove(user_id, site, permission)

    def has_permission(self, user_id: int, site: str, permission: str) -> bool:
        return self.permissions.has(user_id, site, permission)

    def close(self) -> None:
        self.db.close()
