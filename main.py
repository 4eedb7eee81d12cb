#!/usr/bin/env python3
"""
Enigma -- administrative CLI for users, permissions and sessions.

Usage:
  python main.py user create alice s3cret alice@example.com
  python main.py user import bob '$pbkdf2-sha256$i=600000,l=32$<salt>$<hash>'
  python main.py user delete alice
  python main.py user list
  python main.py perm add alice example.com read
  python main.py perm remove alice example.com read
  python main.py session list alice
  python main.py session sweep

Environment variables:
  ENIGMA_DATABASE_URL   SQLAlchemy URL (default sqlite:///enigma.db). --db overrides it.
  ENIGMA_LOG_LEVEL      Logging level (default INFO).
"""

import argparse
import logging
import sys
from typing import Optional

from auth.errors import AuthError
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("enigma.cli")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _user_create(auth: AuthService, args: argparse.Namespace) -> None:
    print(f"create user: {args.username!r}")
    user_id = auth.create_user(args.username, args.password, email=args.email)
    print(f"  created #{user_id}")


def _user_import(auth: AuthService, args: argparse.Namespace) -> None:
    print(f"import user: {args.username!r}")
    user_id = auth.import_user(args.username, args.password_hash, email=args.email)
    print(f"  created #{user_id}")


def _user_delete(auth: AuthService, args: argparse.Namespace) -> None:
    print(f"delete user: {args.username!r}")
    auth.delete_user(args.username)


def _user_list(auth: AuthService, args: argparse.Namespace) -> None:
    users = auth.list_users()
    print(f"found {len(users)} users:")
    for user in users:
        perms = ",".join(f"{p.site}:{p.permission}" for p in user.permissions)
        print(f"  #{user.id:4} | {user.username:>30} | {perms}")


def _perm_add(auth: AuthService, args: argparse.Namespace) -> None:
    print(f"add permission: {args.username!r} {args.site!r} {args.permission!r}")
    user = auth.get_user_by_username(args.username)
    auth.add_permission(user.id, args.site, args.permission)


def _perm_remove(auth: AuthService, args: argparse.Namespace) -> None:
    print(f"remove permission: {args.username!r} {args.site!r} {args.permission!r}")
    user = auth.get_user_by_username(args.username)
    auth.remove_permission(user.id, args.site, args.permission)


def _session_list(auth: AuthService, args: argparse.Namespace) -> None:
    sessions = auth.list_sessions(args.username)
    print(f"found {len(sessions)} sessions for {args.username!r}:")
    for s in sessions:
        last_used = s.last_used_at.isoformat() if s.last_used_at else "never"
        device = s.track.device or "-"
        print(f"  {s.session_token[:8]}... | expires {s.expiry_date.isoformat()} | last used {last_used} | {device}")


def _session_sweep(auth: AuthService, args: argparse.Namespace) -> None:
    removed = auth.sweep_expired_sessions()
    print(f"removed {removed} expired sessions")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="enigma",
        description="Manage Enigma users, permissions and sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py user create alice s3cret
  python main.py perm add alice enigma admin
  python main.py --db sqlite:///other.db user list
        """,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        help="SQLAlchemy database URL (overrides ENIGMA_DATABASE_URL)",
    )
    groups = parser.add_subparsers(dest="group", required=True)

    user = groups.add_parser("user", help="Manage users").add_subparsers(dest="cmd", required=True)
    p = user.add_parser("create", help="Create a new user")
    p.add_argument("username", help="Username of the new user")
    p.add_argument("password", help="Password for the new user")
    p.add_argument("email", nargs="?", default=None, help="Email address for the new user")
    p.set_defaults(func=_user_create)
    p = user.add_parser("import", help="Create a user from an exported $pbkdf2-sha256$ password hash")
    p.add_argument("username", help="Username of the new user")
    p.add_argument("password_hash", help="PHC string, e.g. $pbkdf2-sha256$i=600000,l=32$<salt>$<hash>")
    p.add_argument("email", nargs="?", default=None, help="Email address for the new user")
    p.set_defaults(func=_user_import)
    p = user.add_parser("delete", help="Delete a user with its sessions and permissions")
    p.add_argument("username", help="Username of the user to be deleted")
    p.set_defaults(func=_user_delete)
    p = user.add_parser("list", help="List all users")
    p.set_defaults(func=_user_list)

    perm = groups.add_parser("perm", help="Manage permissions").add_subparsers(dest="cmd", required=True)
    for name, func, verb in (("add", _perm_add, "add the permission to"), ("remove", _perm_remove, "remove it from")):
        p = perm.add_parser(name, help=f"{name.capitalize()} a permission")
        p.add_argument("username", help=f"Username of the user to {verb}")
        p.add_argument("site", help="Site the permission applies to")
        p.add_argument("permission", help="Permission name")
        p.set_defaults(func=func)

    session = groups.add_parser("session", help="Manage sessions").add_subparsers(dest="cmd", required=True)
    p = session.add_parser("list", help="List a user's sessions")
    p.add_argument("username")
    p.set_defaults(func=_session_list)
    p = session.add_parser("sweep", help="Delete all expired sessions")
    p.set_defaults(func=_session_sweep)

    return parser


def main(argv: Optional[list[str]] = None, auth: Optional[AuthService] = None) -> int:
    """Run the CLI. Returns the process exit code (0 success, 1 on an auth error)."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = build_parser().parse_args(argv)

    owns_service = auth is None
    if auth is None:
        if args.db:
            settings = settings.model_copy(update={"database_url": args.db})
        auth = AuthService.from_settings(settings)
    try:
        args.func(auth, args)
    except AuthError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1
    finally:
        if owns_service:
            auth.close()
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
