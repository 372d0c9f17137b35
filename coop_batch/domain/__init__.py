"""coop_batch.domain -- pure job types and retry arithmetic. ZERO I/O."""

from coop_batch.domain.types import (
    ImportJob,
    JobRunResult,
    JobStatus,
    compute_backoff_ms,
)

__all__ = [
    "ImportJob",
    "JobRunResult",
    "JobStatus",
    "compute_backoff_ms",
]
