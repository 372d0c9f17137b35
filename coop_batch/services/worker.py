"""
ImportWorker -- In-process polling worker for the job queue.

Contract:
    ``tick()`` claims at most one due job and runs it.  ``start()`` /
    ``stop()`` run ticks on a background thread.  ``run_until_idle()``
    drains the queue synchronously (tests, one-shot CLI runs).

Architecture: coop_batch/services.  Uses JobQueue for persistence and
    TaskRegistry for dispatch.

Invariants enforced:
    - The claim commits before the task starts, so a crash mid-task leaves
      a RUNNING row that the visibility timeout recovers.
    - The outcome (complete / fail) is recorded in its own transaction.
    - Graceful shutdown: stop() lets the current job finish.
"""

from __future__ import annotations

import threading
import time
import traceback
from typing import Callable

from sqlalchemy.orm import Session

from coop_config.schema import QueueSettings
from coop_kernel.db.engine import session_scope
from coop_kernel.domain.clock import Clock, SystemClock
from coop_kernel.exceptions import JobExecutionError
from coop_kernel.logging_config import LogContext, get_logger

from coop_batch.domain.types import ImportJob, JobRunResult
from coop_batch.services.queue import JobQueue
from coop_batch.tasks.base import TaskRegistry

logger = get_logger("batch.worker")


class ImportWorker:
    """Polls the job queue and runs claimed jobs one at a time.

    Non-goals:
        - NOT a distributed scheduler: several workers may share a
          PostgreSQL queue thanks to SKIP LOCKED, but nothing coordinates them.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        settings: QueueSettings | None = None,
    ):
        self._session_factory = session_factory
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._settings = settings or QueueSettings()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> JobRunResult | None:
        """Claim and run one due job (public for testing).

        Returns None when nothing was due.
        """
        with session_scope(self._session_factory) as session:
            job = self._queue(session).claim_next()
        if job is None:
            return None
        return self._run(job)

    def run_until_idle(self, max_jobs: int = 100) -> list[JobRunResult]:
        """Run due jobs until none is left or ``max_jobs`` ran."""
        results: list[JobRunResult] = []
        while len(results) < max_jobs:
            result = self.tick()
            if result is None:
                break
            results.append(result)
        return results

    def start(self) -> None:
        """Start polling on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="import-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "worker_started",
            extra={"poll_interval": self._settings.poll_interval_seconds},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current job to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("worker_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _queue(self, session: Session) -> JobQueue:
        return JobQueue(session, self._clock, self._settings)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                ran = self.tick()
            except Exception:
                logger.exception("worker_tick_exception")
                ran = None
            if ran is None:
                self._stop_event.wait(timeout=self._settings.poll_interval_seconds)

    def _run(self, job: ImportJob) -> JobRunResult:
        start = time.monotonic()
        with LogContext.bind(job_id=job.job_id):
            try:
                task = self._task_registry.get(job.task_type)
                task.run(job, self._session_factory)
            except Exception as exc:
                message = exc.message if isinstance(exc, JobExecutionError) else str(exc)
                stack = exc.stack if isinstance(exc, JobExecutionError) else traceback.format_exc()
                with session_scope(self._session_factory) as session:
                    outcome = self._queue(session).fail(job.job_id, message, stack)
                return JobRunResult(
                    job_id=job.job_id,
                    task_type=job.task_type,
                    status=outcome.status,
                    attempt=job.attempts,
                    duration_ms=int((time.monotonic() - start) * 1000),
                    error=message,
                )

            with session_scope(self._session_factory) as session:
                outcome = self._queue(session).complete(job.job_id)
            return JobRunResult(
                job_id=job.job_id,
                task_type=job.task_type,
                status=outcome.status,
                attempt=job.attempts,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
