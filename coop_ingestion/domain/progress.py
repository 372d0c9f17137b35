"""
Progress arithmetic for the status endpoint.

Pure functions, ZERO I/O.  The percentage never exceeds 100 and is pinned
to 100 once the session is COMPLETED, so it cannot go backwards while a
run finishes.
"""

from __future__ import annotations

from datetime import datetime

from coop_kernel.domain.clock import ensure_utc

from coop_ingestion.domain.types import ImportStatus


def progress_percentage(processed_rows: int, total_rows: int, status: ImportStatus) -> int:
    """floor(processed / total * 100), clamped to [0, 100]."""
    if status == ImportStatus.COMPLETED:
        return 100
    if total_rows <= 0:
        return 0
    percentage = (max(processed_rows, 0) * 100) // total_rows
    return min(percentage, 100)


def estimate_completion(
    started_at: datetime | None,
    now: datetime,
    processed_rows: int,
    total_rows: int,
) -> datetime | None:
    """Linear extrapolation of the finish time from throughput so far.

    None until the run has started and processed at least one row.
    """
    if started_at is None or processed_rows <= 0:
        return None
    now = ensure_utc(now)
    remaining = total_rows - processed_rows
    if remaining <= 0:
        return now
    elapsed = now - ensure_utc(started_at)
    return now + (elapsed / processed_rows) * remaining
