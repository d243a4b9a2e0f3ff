#!/usr/bin/env python3
"""
Create a login from the command line.

Usage:
    python scripts/create_login.py alice --admin
    python scripts/create_login.py bob --password 'S3cret-enough!'

Without --password a random one is generated and printed once.
"""

from __future__ import annotations

import argparse
import secrets
import sys
from pathlib import Path

from dotenv import load_dotenv

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.tracker.config import load_settings  # noqa: E402
from app.tracker.errors import ApiError  # noqa: E402
from scripts._db_utils import script_api  # noqa: E402


def create_login(username: str, password: str | None = None, is_admin: bool = False) -> str:
    """Returns the password that was set."""
    password = password or secrets.token_urlsafe(18)
    with script_api(load_settings()) as api:
        api.logins.create(username, password, is_admin)
    return password


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a login.")
    parser.add_argument("username")
    parser.add_argument("--password", default=None, help="Password to set (generated when omitted)")
    parser.add_argument("--admin", action="store_true", help="Grant admin rights")
    args = parser.parse_args(argv)

    load_dotenv()
    try:
        password = create_login(args.username, args.password, args.admin)
    except ApiError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return 1

    print(f"Created {'admin ' if args.admin else ''}login {args.username!r}")
    if not args.password:
        print(f"Password: {password}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
