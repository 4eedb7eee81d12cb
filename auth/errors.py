"""
auth/errors.py -- Exception taxonomy for the credential and session engine.

Every failure the engine reports is an AuthError subclass. The five families
(NotFound, Conflict, InvalidCredential, ResourceExhausted, StorageFailure)
are what callers branch on; the leaf classes keep the detail for logging.

AuthService.create_session() is the only place that deliberately collapses
UserNotFound / PasswordIncorrect / InvalidPasswordSalt into LoginFailed, so
clients cannot enumerate usernames. The original error stays chained as
__cause__ for the log line.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth package."""

    code = "auth_error"


# ---------------------------------------------------------------------------
# NotFound
# ---------------------------------------------------------------------------


class NotFound(AuthError):
    code = "not_found"


class UserNotFound(NotFound):
    code = "user_not_found"

    def __init__(self, username: str | None = None, user_id: int | None = None) -> None:
        self.username = username
        self.user_id = user_id
        if username is not None:
            super().__init__(f"user not found: {username!r}")
        elif user_id is not None:
            super().__init__(f"user not found: #{user_id}")
        else:
            super().__init__("user not found")


class SessionNotFound(NotFound):
    code = "session_not_found"

    def __init__(self) -> None:
        super().__init__("session not found")


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class Conflict(AuthError):
    code = "conflict"


class DuplicateUsername(Conflict):
    code = "duplicate_username"

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"username already exists: {username!r}")


# ---------------------------------------------------------------------------
# InvalidCredential
# ---------------------------------------------------------------------------


class InvalidCredential(AuthError):
    code = "invalid_credential"


class PasswordIncorrect(InvalidCredential):
    code = "password_incorrect"

    def __init__(self) -> None:
        super().__init__("password incorrect")


class InvalidPasswordSalt(InvalidCredential):
    code = "invalid_password_salt"

    def __init__(self, reason: str = "invalid password salt") -> None:
        super().__init__(reason)


class UnsupportedHashMethod(InvalidCredential):
    code = "unsupported_hash_method"

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(f"unsupported password hash method: {method!r}")


class LoginFailed(InvalidCredential):
    """Client-facing login failure. Deliberately says nothing about why."""

    code = "bad_credentials"

    def __init__(self) -> None:
        super().__init__("invalid username or password")


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


class SessionExpired(AuthError):
    code = "session_expired"

    def __init__(self) -> None:
        super().__init__("session expired")


# ---------------------------------------------------------------------------
# ResourceExhausted
# ---------------------------------------------------------------------------


class ResourceExhausted(AuthError):
    code = "resource_exhausted"


class SessionCreationFailed(ResourceExhausted):
    code = "session_creation_failed"

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"session creation failed: no unique token after {attempts} attempts")


# ---------------------------------------------------------------------------
# StorageFailure
# ---------------------------------------------------------------------------


class StorageFailure(AuthError):
    """Wraps an underlying SQLAlchemy error. The original is chained as __cause__."""

    code = "storage_failure"
