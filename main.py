#!/usr/bin/env python3
"""
TaskManager -- administrative command line.

Usage:
  python main.py create-admin --name "Ana Admin" --email admin@taskmanager.com --password 'S3cret!pw'
  python main.py purge-tokens

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the database (default: taskmanager.db beside the package).
  SECRET_KEY    Required unless DEBUG=true. Not used by these commands but
                validated on load like everywhere else.
"""

import argparse
import sys

from api.models import check_password_policy
from auth.ledger import TokenLedger
from auth.session import seed_admin
from auth.store import UserStore
from core.config import get_settings


def _create_admin(store: UserStore, args: argparse.Namespace) -> int:
    try:
        check_password_policy(args.password)
    except ValueError as e:
        print(f"  [!] {e}")
        return 1
    if len(args.password) < 6:
        print("  [!] Password must be at least 6 characters.")
        return 1
    user_id = seed_admin(store, args.email, args.password, name=args.name)
    if user_id is None:
        print(f"  [!] {args.email} is already registered.")
        return 1
    print(f"  Admin user created (id {user_id}).")
    return 0


def _purge_tokens(store: UserStore) -> int:
    ledger = TokenLedger(store.engine)
    removed = ledger.purge_expired()
    print(f"  Removed {removed} revoked and expired refresh token(s).")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="taskmanager",
        description="TaskManager administration commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --name "Ana Admin" --email admin@taskmanager.com --password 'S3cret!pw'
  python main.py purge-tokens
  DATABASE_URL=sqlite:////var/lib/taskmanager.db python main.py purge-tokens
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin = commands.add_parser("create-admin", help="Create an Admin account")
    admin.add_argument("--name", default="Administrator", help="Display name (default: Administrator)")
    admin.add_argument("--email", required=True, help="Login email of the new admin")
    admin.add_argument("--password", required=True, help="Initial password (must satisfy the password policy)")

    commands.add_parser("purge-tokens", help="Delete refresh tokens that are both revoked and expired")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return

    store = UserStore(get_settings().database_url)
    try:
        if args.command == "create-admin":
            code = _create_admin(store, args)
        else:
            code = _purge_tokens(store)
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
