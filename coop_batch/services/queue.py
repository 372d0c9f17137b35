"""
JobQueue -- durable, DB-backed job queue with retry and backoff.

Contract:
    ``enqueue()`` creates a PENDING job (idempotency-checked).
    ``claim_next()`` moves the oldest due job to RUNNING.
    ``complete()`` / ``fail()`` record the outcome of an attempt.

Architecture: coop_batch/services.  Imports from coop_batch.domain,
    coop_batch.models and kernel infrastructure.

Invariants enforced:
    - Idempotency via UNIQUE idempotency_key.
    - All timestamps from the injected Clock.
    - Retry delay is backoff_base_ms * 2**(attempt-1); after max_attempts
      the job is DEAD and never claimed again.
    - A RUNNING job whose heartbeat is older than the visibility timeout
      is claimable again (its worker is presumed gone).
    - Claim locks the row (FOR UPDATE SKIP LOCKED where supported).

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from coop_config.schema import QueueSettings
from coop_kernel.domain.clock import Clock, SystemClock
from coop_kernel.exceptions import JobIdempotencyError, JobNotFoundError
from coop_kernel.logging_config import get_logger

from coop_batch.domain.types import (
    CLAIMABLE_STATUSES,
    ImportJob,
    JobStatus,
    compute_backoff_ms,
)
from coop_batch.models.job import ImportJobModel
from coop_batch.tasks.base import TaskRegistry

logger = get_logger("batch.queue")

_MAX_ERROR_LENGTH = 4000


class JobQueue:
    """Queue operations over one SQLAlchemy Session."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: QueueSettings | None = None,
        task_registry: TaskRegistry | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or QueueSettings()
        self._task_registry = task_registry

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        task_type: str,
        parameters: dict[str, Any],
        idempotency_key: str,
        actor_id: UUID,
        max_attempts: int | None = None,
    ) -> ImportJob:
        """Create a PENDING job, due immediately.

        Raises:
            TaskNotRegisteredError: A registry was given and lacks task_type.
            JobIdempotencyError: idempotency_key is already used.
        """
        if self._task_registry is not None:
            self._task_registry.get(task_type)

        existing = self._session.execute(
            select(ImportJobModel).where(
                ImportJobModel.idempotency_key == idempotency_key,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise JobIdempotencyError(idempotency_key, str(existing.id))

        now = self._clock.now()
        dto = ImportJob(
            job_id=uuid4(),
            task_type=task_type,
            status=JobStatus.PENDING,
            idempotency_key=idempotency_key,
            parameters=dict(parameters),
            max_attempts=max_attempts or self._settings.max_attempts,
            backoff_base_ms=self._settings.backoff_base_ms,
            next_run_at=now,
            created_by=actor_id,
            created_at=now,
        )
        model = ImportJobModel.from_dto(dto, created_by_id=actor_id)
        model.created_at = now
        model.updated_at = now
        self._session.add(model)
        self._session.flush()

        logger.info(
            "job_enqueued",
            extra={
                "job_id": str(dto.job_id),
                "task_type": task_type,
                "idempotency_key": idempotency_key,
                "max_attempts": dto.max_attempts,
            },
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Claim / outcome
    # -------------------------------------------------------------------------

    def claim_next(self) -> ImportJob | None:
        """Claim the oldest due job, or None when nothing is runnable."""
        now = self._clock.now()
        stale_before = now - timedelta(seconds=self._settings.visibility_timeout_seconds)

        model = self._session.execute(
            select(ImportJobModel)
            .where(
                or_(
                    and_(
                        ImportJobModel.status.in_([s.value for s in CLAIMABLE_STATUSES]),
                        ImportJobModel.next_run_at <= now,
                    ),
                    and_(
                        ImportJobModel.status == JobStatus.RUNNING.value,
                        ImportJobModel.heartbeat_at < stale_before,
                    ),
                )
            )
            .order_by(ImportJobModel.next_run_at, ImportJobModel.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        ).scalar_one_or_none()

        if model is None:
            return None

        reclaimed = model.status == JobStatus.RUNNING.value
        model.status = JobStatus.RUNNING.value
        model.attempts += 1
        model.started_at = now
        model.heartbeat_at = now
        model.progress = 0
        model.updated_at = now
        self._session.flush()

        logger.info(
            "job_claimed",
            extra={
                "job_id": str(model.id),
                "task_type": model.task_type,
                "attempt": model.attempts,
                "reclaimed": reclaimed,
            },
        )
        return model.to_dto()

    def heartbeat(self, job_id: UUID, progress: int | None = None) -> ImportJob:
        model = self._load(job_id)
        model.heartbeat_at = self._clock.now()
        if progress is not None:
            model.progress = max(model.progress, min(progress, 100))
        self._session.flush()
        return model.to_dto()

    def complete(self, job_id: UUID) -> ImportJob:
        model = self._load(job_id)
        now = self._clock.now()
        model.status = JobStatus.COMPLETED.value
        model.progress = 100
        model.completed_at = now
        model.heartbeat_at = now
        model.updated_at = now
        self._session.flush()

        logger.info(
            "job_completed",
            extra={"job_id": str(job_id), "task_type": model.task_type, "attempt": model.attempts},
        )
        return model.to_dto()

    def fail(self, job_id: UUID, error: str, stack: str | None = None) -> ImportJob:
        """Record a failed attempt: reschedule with backoff, or mark DEAD."""
        model = self._load(job_id)
        now = self._clock.now()
        model.last_error = error[:_MAX_ERROR_LENGTH]
        model.last_traceback = stack
        model.updated_at = now

        if model.attempts >= model.max_attempts:
            model.status = JobStatus.DEAD.value
            model.completed_at = now
            self._session.flush()
            logger.error(
                "job_dead",
                extra={
                    "job_id": str(job_id),
                    "task_type": model.task_type,
                    "attempts": model.attempts,
                    "error": model.last_error,
                },
            )
            return model.to_dto()

        delay_ms = compute_backoff_ms(model.backoff_base_ms, model.attempts)
        model.status = JobStatus.FAILED.value
        model.next_run_at = now + timedelta(milliseconds=delay_ms)
        self._session.flush()

        logger.warning(
            "job_retry_scheduled",
            extra={
                "job_id": str(job_id),
                "task_type": model.task_type,
                "attempt": model.attempts,
                "delay_ms": delay_ms,
                "error": model.last_error,
            },
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_job(self, job_id: UUID) -> ImportJob:
        """Raises JobNotFoundError if job_id does not exist."""
        return self._load(job_id).to_dto()

    def find_by_key(self, idempotency_key: str) -> ImportJob | None:
        model = self._session.execute(
            select(ImportJobModel).where(ImportJobModel.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_jobs(self, status: JobStatus | None = None) -> tuple[ImportJob, ...]:
        query = select(ImportJobModel).order_by(ImportJobModel.created_at)
        if status is not None:
            query = query.where(ImportJobModel.status == status.value)
        return tuple(m.to_dto() for m in self._session.execute(query).scalars().all())

    def _load(self, job_id: UUID) -> ImportJobModel:
        model = self._session.get(ImportJobModel, job_id)
        if model is None:
            raise JobNotFoundError(str(job_id))
        return model
