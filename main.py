#!/usr/bin/env python3
"""
SessionGate -- operator CLI for accounts, roles and remember-me tokens.

Usage:
  python main.py create-user admin@example.com --username admin --role admin
  python main.py create-role editors --description "Can edit content"
  python main.py grant-role admin@example.com editors
  python main.py revoke-role admin@example.com editors
  python main.py set-flag admin@example.com --ban --reason "Abuse"
  python main.py set-flag admin@example.com --activate --force-reset
  python main.py purge-tokens --expired
  python main.py purge-tokens --user admin@example.com
  python main.py attempts --login admin@example.com

The password for create-user is read interactively (never from argv, so it
does not land in shell history). Set SESSIONGATE_PASSWORD to script it.

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default: auth/sessiongate_auth.db)
  BCRYPT_ROUNDS  Cost factor for new password hashes (default: 12)
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import secrets
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.authorization import Authorization
from auth.models import User
from auth.store import UserStore
from auth.tokens import MAX_PASSWORD_BYTES, hash_password
from core.config import get_settings

logger = logging.getLogger("sessiongate.cli")


def _open_store() -> UserStore:
    settings = get_settings()
    return UserStore(settings.database_url) if settings.database_url else UserStore()


def _resolve_user(store: UserStore, login: str) -> Optional[User]:
    """Find a user by email, falling back to username."""
    user = store.find_user("email", login)
    if user is None:
        user = store.find_user("username", login)
    if user is None:
        print(f"  [!] No user matches '{login}'.")
    return user


def _read_password() -> str:
    password = os.environ.get("SESSIONGATE_PASSWORD")
    if password:
        return password
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        raise SystemExit("  [!] Passwords do not match.")
    return first


def cmd_create_user(store: UserStore, args: argparse.Namespace) -> int:
    for role in args.role or []:
        if store.get_role(role) is None:
            print(f"  [!] Role {role!r} does not exist")
            return 1
    password = _read_password()
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return 1
    user = User(
        email=args.email,
        username=args.username,
        password_hash=hash_password(password),
        active=not args.inactive,
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' or username '{args.username}' already exists.")
        return 1
    authorization = Authorization(store)
    for role in args.role or []:
        authorization.add_user_to_role(user_id, role)
    print(f"  Created user {args.email} (id={user_id})")
    return 0


def cmd_create_role(store: UserStore, args: argparse.Namespace) -> int:
    try:
        role_id = Authorization(store).create_role(args.name, args.description)
    except IntegrityError:
        print(f"  [!] Role '{args.name}' already exists.")
        return 1
    print(f"  Created role {args.name} (id={role_id})")
    return 0


def cmd_grant_role(store: UserStore, args: argparse.Namespace) -> int:
    user = _resolve_user(store, args.login)
    if user is None:
        return 1
    try:
        added = Authorization(store).add_user_to_role(user.id, args.role)
    except LookupError as exc:
        print(f"  [!] {exc}")
        return 1
    print(f"  {user.email} {'added to' if added else 'already in'} {args.role}")
    return 0


def cmd_revoke_role(store: UserStore, args: argparse.Namespace) -> int:
    user = _resolve_user(store, args.login)
    if user is None:
        return 1
    try:
        removed = Authorization(store).remove_user_from_role(user.id, args.role)
    except LookupError as exc:
        print(f"  [!] {exc}")
        return 1
    print(f"  {user.email} {'removed from' if removed else 'was not in'} {args.role}")
    return 0


def cmd_set_flag(store: UserStore, args: argparse.Namespace) -> int:
    user = _resolve_user(store, args.login)
    if user is None:
        return 1
    updates: dict = {}
    if args.ban:
        updates.update(banned=True, status_message=args.reason)
    if args.unban:
        updates.update(banned=False, status_message=None)
    if args.activate:
        updates.update(active=True, activate_hash=None)
    if args.deactivate:
        updates["active"] = False
    if args.force_reset:
        updates.update(force_pass_reset=True, reset_hash=secrets.token_hex(16))
    if args.clear_reset:
        updates.update(force_pass_reset=False, reset_hash=None)
    if not updates:
        print("  [!] No flags given.")
        return 1
    store.update_user(user.id, **updates)
    if updates.get("banned") or updates.get("force_pass_reset"):
        # Banned or reset-pending accounts must not resume via old cookies.
        store.purge_remember_tokens(user.id)
    print(f"  Updated {user.email}: {', '.join(sorted(updates))}")
    return 0


def cmd_purge_tokens(store: UserStore, args: argparse.Namespace) -> int:
    if args.user:
        user = _resolve_user(store, args.user)
        if user is None:
            return 1
        count = store.purge_remember_tokens(user.id)
    else:
        count = store.purge_expired_remember_tokens()
    print(f"  Purged {count} remember-me token(s)")
    return 0


def cmd_attempts(store: UserStore, args: argparse.Namespace) -> int:
    for attempt in store.list_login_attempts(login=args.login, limit=args.limit):
        outcome = "ok  " if attempt.success else "FAIL"
        print(f"  {attempt.created_at}  {outcome}  {attempt.login:<30} {attempt.ip_address:<15} {attempt.info}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sessiongate",
        description="Manage SessionGate accounts, roles and remember-me tokens.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-user", help="Create an account (password read from the terminal)")
    p.add_argument("email")
    p.add_argument("--username")
    p.add_argument("--role", action="append", help="Role name to grant; repeatable")
    p.add_argument("--inactive", action="store_true", help="Create the account unactivated")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("create-role", help="Create a role")
    p.add_argument("name")
    p.add_argument("--description", default="")
    p.set_defaults(func=cmd_create_role)

    p = sub.add_parser("grant-role", help="Add a user to a role")
    p.add_argument("login", help="Email or username")
    p.add_argument("role", help="Role name or ID")
    p.set_defaults(func=cmd_grant_role)

    p = sub.add_parser("revoke-role", help="Remove a user from a role")
    p.add_argument("login", help="Email or username")
    p.add_argument("role", help="Role name or ID")
    p.set_defaults(func=cmd_revoke_role)

    p = sub.add_parser("set-flag", help="Ban, activate or force a password reset")
    p.add_argument("login", help="Email or username")
    ban = p.add_mutually_exclusive_group()
    ban.add_argument("--ban", action="store_true")
    ban.add_argument("--unban", action="store_true")
    p.add_argument("--reason", help="Ban reason shown to administrators")
    active = p.add_mutually_exclusive_group()
    active.add_argument("--activate", action="store_true")
    active.add_argument("--deactivate", action="store_true")
    reset = p.add_mutually_exclusive_group()
    reset.add_argument("--force-reset", action="store_true")
    reset.add_argument("--clear-reset", action="store_true")
    p.set_defaults(func=cmd_set_flag)

    p = sub.add_parser("purge-tokens", help="Delete remember-me tokens")
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--expired", action="store_true", help="Only expired tokens")
    target.add_argument("--user", help="Every token owned by this email or username")
    p.set_defaults(func=cmd_purge_tokens)

    p = sub.add_parser("attempts", help="Show recent login attempts")
    p.add_argument("--login", help="Only attempts for this identity")
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_attempts)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    store = _open_store()
    try:
        return args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
