#!/usr/bin/env python3
"""
AuthKeeper -- credential and token lifecycle service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000 --reload
  python main.py purge
  python main.py create-user alice alice@example.com
  python main.py create-user alice alice@example.com --verified
  python main.py revoke-sessions alice

Environment variables (see core/config.py for the full list):
  SECRET_KEY     HMAC key for access tokens, 32+ characters. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL of the row store (default: sqlite:///authkeeper.db).
  SMTP_HOST      Outbound mail server. Leave empty to log mail instead of sending it.
"""

import argparse
import getpass
import logging
import sys

from auth.errors import ServiceError
from auth.service import build_service
from auth.store import UserStore
from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _purge(args: argparse.Namespace) -> int:
    """Delete expired refresh and single-use tokens once, then exit."""
    settings = get_settings()
    store = UserStore(settings.database_url, timeout=settings.store_timeout_seconds)
    try:
        service = build_service(settings, store)
        refresh = service.refresh_tokens.purge_expired()
        single_use = service.single_use_tokens.purge_expired()
    finally:
        store.close()
    print(f"  Purged {refresh} refresh token(s) and {single_use} single-use token(s).")
    return 0


def _create_user(args: argparse.Namespace) -> int:
    """Register a user from the terminal. The password is prompted, never taken from argv."""
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("  [!] Passwords do not match.")
        return 1

    settings = get_settings()
    store = UserStore(settings.database_url, timeout=settings.store_timeout_seconds)
    try:
        service = build_service(settings, store)
        user = service.register(args.username, args.email, password)
        if args.verified:
            store.set_email_verified(user.id)
    except ServiceError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()

    print(f"  Created user {user.username} ({user.id}).")
    return 0


def _revoke_sessions(args: argparse.Namespace) -> int:
    """Log a user out everywhere by deleting all of their refresh tokens."""
    settings = get_settings()
    store = UserStore(settings.database_url, timeout=settings.store_timeout_seconds)
    try:
        user = store.get_by_username(args.username)
        if user is None:
            print(f"  [!] No user named '{args.username}'.")
            return 1
        removed = build_service(settings, store).refresh_tokens.revoke_all(user.id)
    finally:
        store.close()
    print(f"  Revoked {removed} refresh token(s) for {user.username}.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="authkeeper",
        description="Credential and token lifecycle service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  DATABASE_URL=sqlite:///prod.db python main.py purge
  python main.py create-user alice alice@example.com --verified
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_serve)

    purge = sub.add_parser("purge", help="Delete expired refresh and single-use tokens")
    purge.set_defaults(func=_purge)

    create = sub.add_parser("create-user", help="Register a user and mail the verification link")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument(
        "--verified",
        action="store_true",
        help="Mark the email as verified immediately instead of waiting for the link",
    )
    create.set_defaults(func=_create_user)

    revoke = sub.add_parser("revoke-sessions", help="Delete every refresh token of one user")
    revoke.add_argument("username")
    revoke.set_defaults(func=_revoke_sessions)

    args = parser.parse_args()
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
