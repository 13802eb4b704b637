#!/usr/bin/env python3
"""
Slotly auth -- operator command line.

Usage:
  python main.py seed-admin --identity admin@example.com
  SEED_ADMIN_PASSWORD=... python main.py seed-admin --identity admin@example.com --name "Sudo Admin"
  python main.py purge
  python main.py purge --retention-days 7

Environment variables:
  SEED_ADMIN_PASSWORD   Password for seed-admin. Prompted for when unset.
  DATABASE_URL, SECRET_KEY, BCRYPT_ROUNDS, ...  See core/config.py.
"""

import argparse
import getpass
import os
import sys
from datetime import timedelta
from typing import Optional

from auth.components import AuthComponents, build_components
from auth.errors import WeakPassword
from auth.models import Role, User, parse_identity
from auth.passwords import check_password_strength
from core.config import get_settings


def seed_admin(auth: AuthComponents, identity_raw: str, password: str, name: Optional[str]) -> int:
    """Create a verified ADMIN user, or leave an existing account untouched.

    Idempotent: re-running with the same identity changes nothing and returns
    the existing user's id.
    """
    identity = parse_identity(identity_raw)
    existing = auth.store.get_user_by_identity(identity)
    if existing is not None:
        print(f"  Account already exists (id={existing.id}, role={existing.role.value}); nothing changed.")
        return existing.id

    check_password_strength(password, get_settings().min_password_length)
    user = User(
        role=Role.ADMIN,
        hashed_password=auth.hasher.hash(password),
        email=identity.value if identity.kind == "email" else None,
        phone=identity.value if identity.kind == "phone" else None,
        name=name,
        otp_verified=True,
    )
    user_id = auth.store.create_user(user)
    print(f"  Admin seeded: {identity.value} (id={user_id})")
    return user_id


def purge(auth: AuthComponents, retention_days: int) -> dict[str, int]:
    """Delete refresh/reset tokens that have been dead for longer than retention_days."""
    cutoff = auth.store.now() - timedelta(days=retention_days)
    counts = auth.store.purge_expired(cutoff)
    print(
        f"  Purged {counts['refresh_tokens']} refresh token(s) and "
        f"{counts['password_reset_tokens']} reset token(s) dead since before {cutoff.isoformat()}."
    )
    return counts


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="slotly-auth",
        description="Operator tasks for the Slotly auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = sub.add_parser("seed-admin", help="Create the first ADMIN account (idempotent)")
    seed.add_argument("--identity", required=True, metavar="EMAIL_OR_PHONE", help="Admin email or phone")
    seed.add_argument("--name", default="Sudo Admin", help="Display name (default: Sudo Admin)")

    prg = sub.add_parser("purge", help="Delete long-dead refresh and reset tokens")
    prg.add_argument(
        "--retention-days",
        type=int,
        default=None,
        metavar="DAYS",
        help="Keep dead tokens this many days for audit (default: PURGE_RETENTION_DAYS)",
    )

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    auth = build_components(settings)
    try:
        if args.command == "seed-admin":
            password = os.environ.get("SEED_ADMIN_PASSWORD") or getpass.getpass("Admin password: ")
            try:
                seed_admin(auth, args.identity, password, args.name)
            except (ValueError, WeakPassword) as exc:
                print(f"  [!] {getattr(exc, 'message', exc)}")
                return 2
        elif args.command == "purge":
            days = args.retention_days if args.retention_days is not None else settings.purge_retention_days
            purge(auth, days)
    finally:
        auth.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
