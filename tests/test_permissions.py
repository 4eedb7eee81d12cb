"""Unit tests for auth/permissions.py -- the Permission Store.

Covers:
- add() twice leaves exactly one grant row
- remove() of an absent grant succeeds silently
- list_for_user() returns (site, permission) tuples
- has() reflects adds and removes
- add() for a missing user raises UserNotFound
- User.has_permission() agrees with the store predicate
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from auth.errors import UserNotFound
from auth.service import AuthService
from auth.store import permissions


def _grant_rows(service: AuthService, user_id: int) -> int:
    with service.db.transaction() as conn:
        return conn.execute(
            select(func.count()).select_from(permissions).where(permissions.c.user_id == user_id)
        ).scalar()


def test_add_is_idempotent(service: AuthService, alice: int) -> None:
    service.add_permission(alice, "example.com", "read")
    service.add_permission(alice, "example.com", "read")
    assert _grant_rows(service, alice) == 1
    assert service.permissions.list_for_user(alice) == {("example.com", "read")}


def test_remove_absent_grant_is_noop(service: AuthService, alice: int) -> None:
    service.remove_permission(alice, "example.com", "read")
    service.remove_permission(12345, "nowhere", "nothing")
    assert _grant_rows(service, alice) == 0


def test_add_then_remove(service: AuthService, alice: int) -> None:
    service.add_permission(alice, "example.com", "read")
    service.add_permission(alice, "example.com", "write")
    service.remove_permission(alice, "example.com", "read")
    assert service.permissions.list_for_user(alice) == {("example.com", "write")}


def test_has_tracks_grants(service: AuthService, alice: int) -> None:
    assert service.has_permission(alice, "example.com", "read") is False
    service.add_permission(alice, "example.com", "read")
    assert service.has_permission(alice, "example.com", "read") is True
    assert service.has_permission(alice, "example.com", "write") is False
    assert service.has_permission(alice, "other.com", "read") is False
    service.remove_permission(alice, "example.com", "read")
    assert service.has_permission(alice, "example.com", "read") is False


def test_grants_are_per_user(service: AuthService, alice: int) -> None:
    bob = service.create_user("bob", "pw")
    service.add_permission(alice, "example.com", "read")
    assert service.has_permission(bob, "example.com", "read") is False
    assert service.permissions.list_for_user(bob) == set()


def test_add_for_missing_user_raises(service: AuthService) -> None:
    with pytest.raises(UserNotFound):
        service.add_permission(999, "example.com", "read")


def test_user_has_permission_matches_store(service: AuthService, alice: int) -> None:
    service.add_permission(alice, "example.com", "read")
    user = service.get_user_by_id(alice)
    assert user.has_permission("example.com", "read") is True
    assert user.has_permission("example.com", "admin") is False
