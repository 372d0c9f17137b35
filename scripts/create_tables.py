#!/usr/bin/env python3
"""
Create every table the import pipeline uses.

Usage:
    python3 scripts/create_tables.py [--db-url URL] [--drop]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create import pipeline tables.")
    parser.add_argument(
        "--db-url",
        default=None,
        help="Database URL (default: database.url from the active config).",
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop all tables first. Destroys data.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    from coop_config import get_active_config
    from coop_kernel.db.engine import create_tables, drop_tables, init_engine_from_url

    db_url = args.db_url or get_active_config().database.url
    try:
        engine = init_engine_from_url(db_url)
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    if args.drop:
        drop_tables(engine)
        print("Dropped all tables.")
    create_tables(engine)
    print(f"Tables ready on {engine.dialect.name}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
