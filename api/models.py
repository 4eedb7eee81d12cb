"""
API request and response models for Enigma REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from auth.models import Session, TrackInformation, User

# bcrypt reads at most 72 bytes; longer passwords are refused before hashing.
_PASSWORD_MAX_BYTES = 72

# Names given to new records are trimmed. Login credentials are used verbatim so
# they match what the CLI and AuthService stored.
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > _PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {_PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SessionCreate(BaseModel):
    """Request body for POST /api/v1/session/create.

    The track fields are optional client metadata, stored once with the
    session and never updated.
    """

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)

    device: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    location: Optional[str] = None
    os: Optional[str] = None
    browser: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)

    def to_track(self) -> TrackInformation:
        return TrackInformation(**{name: getattr(self, name) for name in TrackInformation.field_names()})


class SessionToken(BaseModel):
    """Request body for POST /api/v1/session/verify and /session/delete."""

    session_token: str = Field(min_length=1, max_length=128)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users. Admin only."""

    username: Name
    password: str = Field(min_length=1)
    email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class PermissionBody(BaseModel):
    """Request body for POST/DELETE /api/v1/users/{username}/permissions."""

    site: Name
    permission: Name


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    site: str
    permission: str


class UserResponse(BaseModel):
    """Public view of a user. Password material is never part of it."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: Optional[str] = None
    permissions: list[PermissionResponse]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            permissions=[PermissionResponse(site=p.site, permission=p.permission) for p in user.permissions],
        )


class TrackResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    device: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    location: Optional[str] = None
    os: Optional[str] = None
    browser: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None


class SessionResponse(BaseModel):
    """A session with its user and track snapshot."""

    model_config = ConfigDict(frozen=True)

    session_token: str
    expiry_date: datetime
    created_at: datetime
    last_used_at: Optional[datetime] = None
    user: UserResponse
    track: TrackResponse

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        """Factory Method -- the domain-to-contract mapping lives next to the contract."""
        return cls(
            session_token=session.session_token,
            expiry_date=session.expiry_date,
            created_at=session.created_at,
            last_used_at=session.last_used_at,
            user=UserResponse.from_user(session.user),
            track=TrackResponse(**{name: getattr(session.track, name) for name in TrackInformation.field_names()}),
        )


class UserCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
