"""
ORM model for queued import jobs.

Contract:
    ImportJobModel persists one apply or rollback job: its parameters,
    attempt bookkeeping, schedule and last failure.  ``to_dto()`` /
    ``from_dto()`` convert to and from the frozen ImportJob.

Architecture: coop_batch/models. Imports from coop_kernel.db.base only.

Invariants enforced:
    - ``idempotency_key`` is UNIQUE: one job per task and session.
    - ``attempts`` never exceeds ``max_attempts``.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from coop_kernel.db.base import JSONDocument, TrackedBase

if TYPE_CHECKING:
    from coop_batch.domain.types import ImportJob


class ImportJobModel(TrackedBase):
    """Persistent queue entry."""

    __tablename__ = "import_jobs"

    __table_args__ = (
        Index("ix_import_jobs_status_next_run", "status", "next_run_at"),
        Index("ix_import_jobs_task_type", "task_type"),
    )

    task_type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    parameters: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    backoff_base_ms: Mapped[int] = mapped_column(Integer, default=2000, nullable=False)
    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_traceback: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> ImportJob:
        from coop_batch.domain.types import ImportJob, JobStatus

        return ImportJob(
            job_id=self.id,
            task_type=self.task_type,
            status=JobStatus(self.status),
            idempotency_key=self.idempotency_key,
            parameters=dict(self.parameters or {}),
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            backoff_base_ms=self.backoff_base_ms,
            next_run_at=self.next_run_at,
            progress=self.progress,
            started_at=self.started_at,
            completed_at=self.completed_at,
            heartbeat_at=self.heartbeat_at,
            last_error=self.last_error,
            last_traceback=self.last_traceback,
            created_by=self.created_by_id,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: ImportJob, created_by_id: UUID) -> ImportJobModel:
        return cls(
            id=dto.job_id,
            task_type=dto.task_type,
            status=dto.status.value,
            idempotency_key=dto.idempotency_key,
            parameters=dto.parameters,
            attempts=dto.attempts,
            max_attempts=dto.max_attempts,
            backoff_base_ms=dto.backoff_base_ms,
            next_run_at=dto.next_run_at,
            progress=dto.progress,
            created_by_id=created_by_id,
        )
