#!/usr/bin/env python3
"""
Serve the import API with uvicorn.

Usage:
    python3 scripts/serve_api.py [--host 0.0.0.0] [--port 8000] [--config path.yaml]

The queue worker runs inside the API process unless the active config sets
``queue.worker_enabled: false`` (or ``--no-worker`` is given), in which case
run ``scripts/run_worker.py`` separately.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Serve the import REST API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1).")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000).")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML override file (default: COOP_IMPORT_CONFIG env or shipped defaults).",
    )
    parser.add_argument(
        "--no-worker",
        action="store_true",
        help="Do not run the job worker inside the API process.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    import uvicorn

    from coop_api import create_app
    from coop_config import get_active_config

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    app = create_app(config, start_worker=False if args.no_worker else None)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
