"""Unit tests for auth/credentials.py -- the Credential Store.

Covers:
- create() + verify_credentials() round trip returns the same user id
- Wrong password returns None; unknown username raises UserNotFound
- Duplicate username raises DuplicateUsername and leaves one row
- Read accessors return fully hydrated users (permissions included)
- create_with_hash() imports legacy rows and rejects unknown methods
- delete_by_username() removes the user's sessions and permissions
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from auth import passwords
from auth.errors import DuplicateUsername, InvalidPasswordSalt, UnsupportedHashMethod, UserNotFound
from auth.models import Permission
from auth.passwords import HashedPassword
from auth.service import AuthService
from auth.store import permissions, sessions, users

LEGACY_PHC = "$pbkdf2-sha256$i=600000,l=32$vkzROAFwR3Zgx+KZU7Ecxw$npnw9yAJfs39y2cuHGwgCyklCz5yaUy8pt+LhNe7zak"


def _count(service: AuthService, table) -> int:
    with service.db.transaction() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar()


class TestCreateAndVerify:
    def test_verify_returns_created_id(self, service: AuthService) -> None:
        uid = service.create_user("bob", "hunter2")
        assert uid > 0
        assert service.credentials.verify_credentials("bob", "hunter2") == uid

    def test_verify_wrong_password_returns_none(self, service: AuthService, alice: int) -> None:
        assert service.credentials.verify_credentials("alice", "wrong") is None

    def test_verify_unknown_username_raises(self, service: AuthService) -> None:
        with pytest.raises(UserNotFound):
            service.credentials.verify_credentials("nobody", "secret1")

    def test_many_users_each_verify(self, service: AuthService) -> None:
        ids = {name: service.create_user(name, f"{name}-pw") for name in ("u1", "u2", "u3")}
        for name, uid in ids.items():
            assert service.credentials.verify_credentials(name, f"{name}-pw") == uid
            assert service.credentials.verify_credentials(name, "nope") is None

    def test_duplicate_username(self, service: AuthService, alice: int) -> None:
        with pytest.raises(DuplicateUsername):
            service.create_user("alice", "other")
        assert _count(service, users) == 1

    def test_password_material_stored_separately(self, service: AuthService, alice: int) -> None:
        with service.db.transaction() as conn:
            row = conn.execute(users.select().where(users.c.id == alice)).fetchone()
        assert row.password_method == "bcrypt"
        assert row.password_hash.startswith(row.password_salt)
        assert "secret1" not in row.password_hash

    def test_corrupted_salt_surfaces_as_invalid_salt(self, service: AuthService, alice: int) -> None:
        with service.db.transaction() as conn:
            conn.execute(users.update().where(users.c.id == alice).values(password_salt="$2b$04$corrupted"))
        with pytest.raises(InvalidPasswordSalt):
            service.credentials.verify_credentials("alice", "secret1")


class TestCreateWithHash:
    def test_import_pbkdf2_user(self, service: AuthService) -> None:
        hashed = passwords.hash_pbkdf2("password123", b"legacy-salt-1234", iterations=1000)
        uid = service.credentials.create_with_hash("legacy", hashed)
        assert service.credentials.verify_credentials("legacy", "password123") == uid
        assert service.credentials.verify_credentials("legacy", "password12") is None

    def test_imported_user_can_log_in(self, service: AuthService) -> None:
        service.import_user("test", LEGACY_PHC)
        session = service.create_session("test", "password123")
        assert session.user.username == "test"

    def test_unknown_method_rejected_before_insert(self, service: AuthService) -> None:
        with pytest.raises(UnsupportedHashMethod):
            service.credentials.create_with_hash("weird", HashedPassword("h", "s", "md5"))
        assert _count(service, users) == 0


class TestReads:
    def test_get_by_username_hydrates_permissions(self, service: AuthService, alice: int) -> None:
        service.add_permission(alice, "example.com", "read")
        service.add_permission(alice, "example.com", "write")
        user = service.get_user_by_username("alice")
        assert user.id == alice
        assert user.email == "alice@example.com"
        assert set(user.permissions) == {Permission("example.com", "read"), Permission("example.com", "write")}

    def test_get_by_id_matches_get_by_username(self, service: AuthService, alice: int) -> None:
        service.add_permission(alice, "site", "perm")
        assert service.get_user_by_id(alice) == service.get_user_by_username("alice")

    def test_get_missing_user_raises(self, service: AuthService) -> None:
        with pytest.raises(UserNotFound):
            service.get_user_by_username("ghost")
        with pytest.raises(UserNotFound):
            service.get_user_by_id(999)

    def test_list_all_ordered_and_hydrated(self, service: AuthService) -> None:
        zed = service.create_user("zed", "pw")
        amy = service.create_user("amy", "pw")
        service.add_permission(zed, "a", "b")
        listed = service.list_users()
        assert [u.username for u in listed] == ["amy", "zed"]
        assert listed[0].id == amy and listed[0].permissions == []
        assert listed[1].permissions == [Permission("a", "b")]


class TestDelete:
    def test_delete_cascades_sessions_and_permissions(self, service: AuthService, alice: int) -> None:
        bob = service.create_user("bob", "pw")
        service.add_permission(alice, "example.com", "read")
        service.add_permission(bob, "example.com", "read")
        token = service.create_session("alice", "secret1").session_token
        service.create_session("bob", "pw")

        service.delete_user("alice")

        with pytest.raises(UserNotFound):
            service.get_user_by_username("alice")
        assert service.permissions.list_for_user(alice) == set()
        assert not service.check_session(token).is_valid
        assert _count(service, sessions) == 1
        assert _count(service, permissions) == 1

    def test_delete_unknown_user_raises(self, service: AuthService) -> None:
        with pytest.raises(UserNotFound):
            service.delete_user("ghost")
