#!/usr/bin/env python3
"""
Run database migrations.

Usage:
    python scripts/migrate.py                      # upgrade to head
    python scripts/migrate.py upgrade 001
    python scripts/migrate.py downgrade -1
    python scripts/migrate.py current
    python scripts/migrate.py create "add column"
"""

import argparse
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def get_config() -> Config:
    """Alembic configuration rooted at the project directory."""
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    return alembic_cfg


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Manage database migrations")
    subparsers = parser.add_subparsers(dest="action")

    upgrade = subparsers.add_parser("upgrade", help="Upgrade to a revision (default: head)")
    upgrade.add_argument("revision", nargs="?", default="head")

    downgrade = subparsers.add_parser("downgrade", help="Downgrade to a revision")
    downgrade.add_argument("revision")

    subparsers.add_parser("current", help="Show the current revision")

    create = subparsers.add_parser("create", help="Autogenerate a new revision")
    create.add_argument("message", nargs="+")

    args = parser.parse_args()
    alembic_cfg = get_config()

    try:
        if args.action in (None, "upgrade"):
            revision = getattr(args, "revision", "head")
            print(f"Upgrading database to {revision}...")
            command.upgrade(alembic_cfg, revision)
        elif args.action == "downgrade":
            print(f"Downgrading database to {args.revision}...")
            command.downgrade(alembic_cfg, args.revision)
        elif args.action == "current":
            command.current(alembic_cfg, verbose=True)
            return
        else:
            message = " ".join(args.message)
            print(f"Creating migration: {message}")
            command.revision(alembic_cfg, message=message, autogenerate=True)
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        sys.exit(1)

    print("✓ Done")


if __name__ == "__main__":
    main()
