"""
auth/permissions.py -- Permission Store: flat (user, site, permission) grants.

add() and remove() are idempotent. A duplicate add is detected by a point
read first; a concurrent writer that slips in between the read and the insert
trips the UNIQUE(user_id, site, permission) constraint inside a SAVEPOINT,
which is rolled back and treated as "already granted".

has() is a point-in-time advisory read in its own short transaction. Callers
that need the check and their subsequent action to be atomic must do both
against the same connection (see load_grants()).
"""

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth.errors import UserNotFound
from auth.models import Permission
from auth.store import Database, _row_to_permission, permissions, users

logger = logging.getLogger("enigma.auth")


def _grant_clause(user_id: int, site: str, permission: str):
    return (permissions.c.user_id == user_id) & (permissions.c.site == site) & (permissions.c.permission == permission)


class PermissionStore:
    """Repository for permission grants."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def add(self, user_id: int, site: str, permission: str) -> None:
        """Grant (site, permission) to the user. Granting twice is a no-op.

        Raises UserNotFound if user_id does not exist.
        """
        with self.db.transaction() as conn:
            if conn.execute(select(users.c.id).where(users.c.id == user_id)).scalar() is None:
                raise UserNotFound(user_id=user_id)
            exists = conn.execute(select(permissions.c.id).where(_grant_clause(user_id, site, permission))).scalar()
            if exists is not None:
                logger.debug("permission %s:%s already granted to #%d", site, permission, user_id)
                return
            try:
                with conn.begin_nested():
                    conn.execute(permissions.insert().values(user_id=user_id, site=site, permission=permission))
            except IntegrityError:
                logger.debug("permission %s:%s granted concurrently to #%d", site, permission, user_id)
                return
        logger.info("granted %s:%s to #%d", site, permission, user_id)

    def remove(self, user_id: int, site: str, permission: str) -> None:
        """Revoke (site, permission) from the user. Revoking an absent grant is a no-op."""
        with self.db.transaction() as conn:
            removed = conn.execute(permissions.delete().where(_grant_clause(user_id, site, permission))).rowcount
        if removed:
            logger.info("revoked %s:%s from #%d", site, permission, user_id)

    def list_for_user(self, user_id: int) -> set[tuple[str, str]]:
        with self.db.transaction() as conn:
            return {(p.site, p.permission) for p in self.load_grants(conn, user_id)}

    def has(self, user_id: int, site: str, permission: str) -> bool:
        with self.db.transaction() as conn:
            found = conn.execute(select(permissions.c.id).where(_grant_clause(user_id, site, permission))).scalar()
        return found is not None

    # ------------------------------------------------------------------
    # Connection-level loaders
    # ------------------------------------------------------------------

    def load_grants(self, conn: Connection, user_id: int) -> list[Permission]:
        rows = conn.execute(
            permissions.select()
            .where(permissions.c.user_id == user_id)
            .order_by(permissions.c.site, permissions.c.permission)
        ).fetchall()
        return [_row_to_permission(r) for r in rows]

    def load_all_grants(self, conn: Connection) -> dict[int, list[Permission]]:
        """Return every grant keyed by user id, in one query."""
        rows = conn.execute(
            permissions.select().order_by(permissions.c.user_id, permissions.c.site, permissions.c.permission)
        ).fetchall()
        grants: dict[int, list[Permission]] = defaultdict(list)
        for row in rows:
            grants[row.user_id].append(_row_to_permission(row))
        return grants
