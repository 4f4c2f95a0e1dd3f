#!/usr/bin/env python3
"""
CourseHub Auth -- operator command line.

Usage:
  python main.py create-admin --email admin@example.com
  python main.py create-admin --email admin@example.com --username admin
  python main.py purge-expired
  python main.py serve --port 8000

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL of the auth database (default: local SQLite file).
  ADMIN_PASSWORD Read by create-admin instead of prompting, for scripted setups.
"""

import argparse
import getpass
import os
import sys

from auth.errors import DuplicateIdentifier
from auth.mailer import build_mailer
from auth.service import AuthService
from auth.store import AuthStore
from core.config import get_settings


def _build_service() -> AuthService:
    settings = get_settings()
    return AuthService(AuthStore(settings.database_url), build_mailer(settings), settings)


def _read_password() -> str:
    """Return ADMIN_PASSWORD if set, otherwise prompt twice without echo."""
    password = os.environ.get("ADMIN_PASSWORD")
    if password:
        return password
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def cmd_create_admin(args: argparse.Namespace) -> int:
    password = _read_password()
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    if len(password.encode("utf-8")) > 72:
        print("  [!] Password must be at most 72 bytes.")
        return 1
    service = _build_service()
    try:
        user = service.bootstrap_admin(args.email, password, username=args.username)
    except DuplicateIdentifier:
        print(f"  [!] An account with email '{args.email}' or that username already exists.")
        return 1
    finally:
        service.store.close()
    print(f"  Admin account created: id={user.id} email={user.email}")
    return 0


def cmd_purge_expired(args: argparse.Namespace) -> int:
    service = _build_service()
    try:
        sessions, links = service.purge_expired()
    finally:
        service.store.close()
    print(f"  {sessions} expired session(s) revoked, {links} expired link(s) deleted.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="coursehub-auth",
        description="CourseHub authentication service -- operator commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  DEBUG=true python main.py create-admin --email admin@example.com
  ADMIN_PASSWORD=... python main.py create-admin --email admin@example.com --username admin
  python main.py purge-expired
  python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = sub.add_parser("create-admin", help="Create a confirmed admin account")
    p_admin.add_argument("--email", required=True, help="Admin email address (login identifier)")
    p_admin.add_argument("--username", default=None, help="Optional username usable at login")
    p_admin.set_defaults(func=cmd_create_admin)

    p_purge = sub.add_parser("purge-expired", help="Revoke expired sessions and delete expired links")
    p_purge.set_defaults(func=cmd_purge_expired)

    p_serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    p_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
