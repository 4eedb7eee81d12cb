"""
api/main.py -- FastAPI application entry point for Enigma.

Exposes the session engine over HTTP so other services can log users in and
verify session tokens without sharing the database.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. log_requests          -- one access log line per request

Lifespan opens the Database + AuthService on startup and disposes the engine
on shutdown. Expired sessions are NOT swept here; run `python main.py
session sweep` from a scheduler.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.sessions import router as sessions_router
from api.routes.v1.users import router as users_router
from auth.errors import (
    AuthError,
    Conflict,
    InvalidCredential,
    NotFound,
    ResourceExhausted,
    SessionExpired,
    SessionNotFound,
    StorageFailure,
)
from auth.service import AuthService
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("enigma.api")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the auth service on startup and release the connection pool on shutdown."""
    logger.info("Enigma API v%s starting up", VERSION)
    app.state.auth = AuthService.from_settings(get_settings())
    logger.info("Auth service initialized")

    yield

    app.state.auth.close()
    logger.info("Enigma API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Enigma API",
    description="Username/password sessions and per-site permission grants.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(sessions_router, prefix="/api/v1", tags=["Sessions"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Most specific first; the first isinstance() match wins.
_AUTH_ERROR_STATUS: list[tuple[type[AuthError], int]] = [
    (SessionNotFound, 404),
    (SessionExpired, 401),
    (NotFound, 404),
    (Conflict, 409),
    (InvalidCredential, 400),
    (ResourceExhausted, 503),
    (StorageFailure, 500),
]


def _status_for(exc: AuthError) -> int:
    for cls, status in _AUTH_ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 400


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth error taxonomy onto HTTP statuses.

    StorageFailure messages can contain SQL, so 5xx responses carry only the
    error code; the full error goes to the log.
    """
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        message = "An internal error occurred."
    else:
        message = str(exc)
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=message)).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a dict detail; use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    auth: AuthService = request.app.state.auth
    database = "ok" if auth.db.ping() else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
