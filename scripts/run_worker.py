#!/usr/bin/env python3
"""
Run the import job worker as a standalone process.

Usage:
    python3 scripts/run_worker.py [--config path.yaml] [--once]

Polls ``import_jobs`` and runs apply / rollback jobs until interrupted.
``--once`` drains the due jobs and exits.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the import job worker.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML override file (default: COOP_IMPORT_CONFIG env or shipped defaults).",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run every due job, then exit.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    from coop_batch.orchestrator import JobOrchestrator
    from coop_config import get_active_config
    from coop_kernel.db.engine import get_session_factory, init_engine_from_url
    from coop_kernel.logging_config import configure_logging

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    configure_logging(level=config.logging.level)
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    worker = JobOrchestrator(get_session_factory(), config=config).create_worker()

    if args.once:
        results = worker.run_until_idle()
        for result in results:
            print(f"{result.job_id} {result.task_type} -> {result.status.value}")
        return 0

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    worker.start()
    print("Worker running. Press Ctrl+C to stop.")
    stop.wait()
    worker.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
