"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

Two token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "session_token" cookie -- browser clients.

Both converge on AuthService.check_session(), so a successful lookup also
touches last_used_at exactly like POST /session/verify does.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises HTTP 401 if unauthenticated.
require_permission(site, permission) builds a dependency that additionally
raises HTTP 403 unless the session's user holds that grant.
require_admin is require_permission() bound to the configured admin grant.

Layer rule: may import fastapi and core.config; no imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import Session
from auth.service import AuthService
from core.config import get_settings

SESSION_COOKIE = "session_token"


def _request_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE) or None


def try_get_current_session(request: Request) -> Session | None:
    """Return the verified Session for this request, or None. Never raises HTTP errors."""
    token = _request_token(request)
    if not token:
        return None
    auth: AuthService = request.app.state.auth
    return auth.check_session(token).session


def get_current_session(request: Request) -> Session:
    """Require a valid session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: Session = Depends(get_current_session)): ...
    """
    session = try_get_current_session(request)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "A valid session is required."},
        )
    return session


def require_permission(site: str, permission: str) -> Callable[[Request], Session]:
    """Build a dependency that requires the (site, permission) grant.

    The check runs against the permission list hydrated into the session by
    the same verification transaction, not a second read.
    """

    def dependency(request: Request) -> Session:
        session = get_current_session(request)
        if not session.user.has_permission(site, permission):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"Permission {site}:{permission} required."},
            )
        return session

    return dependency


def require_admin(request: Request) -> Session:
    """Require the configured admin grant (ENIGMA_ADMIN_SITE / ENIGMA_ADMIN_PERMISSION)."""
    settings = get_settings()
    return require_permission(settings.admin_site, settings.admin_permission)(request)
