"""
api/routes/v1/sessions.py -- Session create / verify / delete endpoints.

Routes:
  POST /api/v1/session/create  -- password login; returns the session and sets the cookie
  POST /api/v1/session/verify  -- look up a token; 404 unknown, 401 expired
  POST /api/v1/session/delete  -- log out; idempotent

Security:
  Login returns the same "bad_credentials" error for unknown usernames, wrong
  passwords and unreadable password rows. AuthService.create_session() does
  the collapsing; this module only renders it.
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, MessageResponse, SessionCreate, SessionResponse, SessionToken
from auth.dependencies import SESSION_COOKIE
from auth.errors import LoginFailed
from auth.service import AuthService
from core.config import get_settings

# Auth policy: all three routes are public -- the token in the body is the credential.
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/session/create", response_model=SessionResponse)
def create_session(request: Request, body: SessionCreate) -> JSONResponse:
    """Authenticate with username and password and open a new session."""
    auth: AuthService = request.app.state.auth
    try:
        session = auth.create_session(body.username, body.password, body.to_track())
    except LoginFailed as exc:
        return _no_store(
            JSONResponse(
                status_code=401,
                content=ErrorResponse(
                    error=ErrorDetail(code=exc.code, message="Invalid username or password.")
                ).model_dump(),
            )
        )

    payload = SessionResponse.from_session(session)
    resp = JSONResponse(status_code=200, content=payload.model_dump(mode="json"))
    max_age = int((session.expiry_date - session.created_at).total_seconds())
    resp.set_cookie(
        SESSION_COOKIE,
        value=session.session_token,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=max_age,
    )
    return _no_store(resp)


@router.post("/session/verify", response_model=SessionResponse)
def verify_session(request: Request, body: SessionToken) -> JSONResponse:
    """Return the session for a token. SessionNotFound / SessionExpired map to 404 / 401."""
    auth: AuthService = request.app.state.auth
    session = auth.verify_session(body.session_token)
    return _no_store(JSONResponse(content=SessionResponse.from_session(session).model_dump(mode="json")))


@router.post("/session/delete", response_model=MessageResponse)
def delete_session(request: Request, body: SessionToken) -> JSONResponse:
    """Delete a session. Unknown tokens succeed too."""
    auth: AuthService = request.app.state.auth
    auth.delete_session(body.session_token)
    resp = JSONResponse(content=MessageResponse(message="Session deleted.").model_dump())
    resp.delete_cookie(SESSION_COOKIE)
    return resp
