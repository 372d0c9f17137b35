"""
coop_batch.domain.types -- Pure frozen dataclasses for the job queue.

ZERO I/O.  Jobs are immutable snapshots of an ``import_jobs`` row; the
queue service owns every state change.

Job lifecycle:

    PENDING -> RUNNING -> COMPLETED
                  |
                  +--> FAILED (retry scheduled at next_run_at) -> RUNNING ...
                  +--> DEAD   (attempts exhausted)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class JobStatus(str, Enum):
    """Job-level lifecycle status."""

    PENDING = "PENDING"  # Waiting for its first attempt
    RUNNING = "RUNNING"  # Claimed by a worker
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"  # Last attempt failed, retry scheduled
    DEAD = "DEAD"  # Attempts exhausted, needs a human


CLAIMABLE_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.PENDING, JobStatus.FAILED})


def compute_backoff_ms(base_ms: int, attempt: int) -> int:
    """Delay before retrying after ``attempt`` failed: base * 2**(attempt-1)."""
    return base_ms * (2 ** max(attempt - 1, 0))


@dataclass(frozen=True)
class ImportJob:
    """Immutable snapshot of a queued job."""

    job_id: UUID
    task_type: str
    status: JobStatus
    idempotency_key: str
    parameters: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    backoff_base_ms: int = 2000
    next_run_at: datetime | None = None
    progress: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    heartbeat_at: datetime | None = None
    last_error: str | None = None
    last_traceback: str | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.DEAD)

    def to_json(self) -> dict[str, Any]:
        return {
            "id": str(self.job_id),
            "taskType": self.task_type,
            "status": self.status.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "progress": self.progress,
            "nextRunAt": self.next_run_at.isoformat() if self.next_run_at else None,
            "lastError": self.last_error,
        }


@dataclass(frozen=True)
class JobRunResult:
    """Outcome of one worker tick that ran a job."""

    job_id: UUID
    task_type: str
    status: JobStatus
    attempt: int
    duration_ms: int
    error: str | None = None
