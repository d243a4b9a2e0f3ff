#!/usr/bin/env python3
"""
Housekeeping: drop expired sessions and delete asset files no row refers to.

Usage:
    python scripts/cleanup.py
    python scripts/cleanup.py --dry-run
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.tracker.config import load_settings  # noqa: E402
from scripts._db_utils import script_api  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Remove expired sessions and unused asset files.")
    parser.add_argument("--dry-run", action="store_true", help="Only list the files that would be removed")
    args = parser.parse_args(argv)

    load_dotenv()
    with script_api(load_settings()) as api:
        if args.dry_run:
            unused = api.unused_asset_names()
            print(f"{len(unused)} unused asset files:")
            for name in unused:
                print(f"  {name}")
            return 0

        sessions = api.sessions.remove_expired()
        removed = api.remove_unused_assets()

    print(f"Removed {sessions} expired sessions and {len(removed)} unused asset files.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
