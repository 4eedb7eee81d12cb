"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
service do the work; these only own the domain shape.

Password material (hash, salt, method) is deliberately absent from User.
It only ever travels inside auth/credentials.py as a StoredCredential.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime


@dataclass(frozen=True)
class Permission:
    """A (site, permission) grant held by a user."""

    site: str
    permission: str


@dataclass
class User:
    """An identity in the credential store, always fully hydrated.

    permissions is derived from the permissions table on every read. A User
    value is never returned with a partial grant list.
    """

    id: int
    username: str
    email: str | None = None
    created_at: str | None = None
    permissions: list[Permission] = field(default_factory=list)

    def has_permission(self, site: str, permission: str) -> bool:
        """Check a grant against the hydrated permission list (no storage access)."""
        return Permission(site, permission) in self.permissions


@dataclass
class TrackInformation:
    """Client metadata captured once at session creation and never updated."""

    device: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    location: str | None = None
    os: str | None = None
    browser: str | None = None
    screen_resolution: str | None = None
    timezone: str | None = None

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]


@dataclass
class Session:
    """An authenticated, time-bounded credential with its owning user embedded.

    expiry_date is absolute (created_at + lifetime). last_used_at is None
    until the first successful verification.
    """

    user: User
    session_token: str
    expiry_date: datetime
    created_at: datetime
    track: TrackInformation = field(default_factory=TrackInformation)
    last_used_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expiry_date < now
