"""
api/routes/v1/users.py -- User and permission management endpoints.

Routes:
  GET    /api/v1/users                            -- list users with grants
  POST   /api/v1/users                            -- create user; 409 on duplicate
  GET    /api/v1/users/{username}                 -- one user; 404 if unknown
  DELETE /api/v1/users/{username}                 -- delete user, its sessions and grants
  POST   /api/v1/users/{username}/permissions     -- grant (idempotent)
  DELETE /api/v1/users/{username}/permissions     -- revoke (idempotent)

Every route requires a session whose user holds the admin grant
(ENIGMA_ADMIN_SITE:ENIGMA_ADMIN_PERMISSION, default enigma:admin).
AuthError subclasses raised by the service are mapped to HTTP statuses by
the exception handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import MessageResponse, PermissionBody, UserCreate, UserCreatedResponse, UserResponse
from auth.dependencies import require_admin
from auth.models import Session
from auth.service import AuthService

router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, admin: Session = Depends(require_admin)) -> list[UserResponse]:
    auth: AuthService = request.app.state.auth
    return [UserResponse.from_user(u) for u in auth.list_users()]


@router.post("/users", response_model=UserCreatedResponse, status_code=201)
def create_user(request: Request, body: UserCreate, admin: Session = Depends(require_admin)) -> UserCreatedResponse:
    auth: AuthService = request.app.state.auth
    user_id = auth.create_user(body.username, body.password, email=body.email)
    return UserCreatedResponse(id=user_id, username=body.username)


@router.get("/users/{username}", response_model=UserResponse)
def get_user(request: Request, username: str, admin: Session = Depends(require_admin)) -> UserResponse:
    auth: AuthService = request.app.state.auth
    return UserResponse.from_user(auth.get_user_by_username(username))


@router.delete("/users/{username}", response_model=MessageResponse)
def delete_user(request: Request, username: str, admin: Session = Depends(require_admin)) -> MessageResponse:
    auth: AuthService = request.app.state.auth
    auth.delete_user(username)
    return MessageResponse(message=f"User {username} deleted.")


@router.post("/users/{username}/permissions", response_model=UserResponse)
def add_permission(
    request: Request,
    username: str,
    body: PermissionBody,
    admin: Session = Depends(require_admin),
) -> UserResponse:
    auth: AuthService = request.app.state.auth
    user = auth.get_user_by_username(username)
    auth.add_permission(user.id, body.site, body.permission)
    return UserResponse.from_user(auth.get_user_by_id(user.id))


@router.delete("/users/{username}/permissions", response_model=UserResponse)
def remove_permission(
    request: Request,
    username: str,
    body: PermissionBody,
    admin: Session = Depends(require_admin),
) -> UserResponse:
    auth: AuthService = request.app.state.auth
    user = auth.get_user_by_username(username)
    auth.remove_permission(user.id, body.site, body.permission)
    return UserResponse.from_user(auth.get_user_by_id(user.id))
