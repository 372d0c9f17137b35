"""
Import apply and rollback tasks.

Each task builds an ImportService per unit of work through the factory the
orchestrator provides.  Apply failures are written to the session in a
second transaction, because the apply transaction itself has been rolled
back by then.  While rows are applied, progress is forwarded to the job's
heartbeat so another worker does not reclaim a live job.
"""

from __future__ import annotations

import traceback
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from coop_kernel.db.engine import session_scope
from coop_kernel.exceptions import ImportSessionNotFoundError, JobExecutionError
from coop_kernel.logging_config import get_logger

from coop_ingestion.domain.progress import progress_percentage
from coop_ingestion.domain.types import ImportStatus
from coop_ingestion.importers import ProgressCallback
from coop_ingestion.services.import_service import (
    APPLY_IMPORT_TASK,
    ROLLBACK_IMPORT_TASK,
    ImportService,
)

from coop_batch.domain.types import ImportJob

logger = get_logger("batch.import_tasks")

ServiceFactory = Callable[[Session], ImportService]

# (job id, percent done); must commit on its own unit of work
Heartbeat = Callable[[UUID, int], None]


def _job_subject(job: ImportJob) -> tuple[UUID, UUID]:
    return UUID(job.parameters["session_id"]), UUID(job.parameters["actor_id"])


class ApplyImportTask:
    """Runs the session's importer inside one transaction."""

    task_type = APPLY_IMPORT_TASK
    description = "Apply an import session's rows to the entity store"

    def __init__(self, service_factory: ServiceFactory, heartbeat: Heartbeat | None = None):
        self._service_factory = service_factory
        self._heartbeat = heartbeat

    def run(self, job: ImportJob, session_factory: Callable[[], Session]) -> None:
        session_id, actor_id = _job_subject(job)
        try:
            with session_scope(session_factory) as db:
                self._service_factory(db).apply_import(
                    session_id, actor_id, self._progress_reporter(job),
                )
        except ImportSessionNotFoundError:
            logger.warning("import_job_session_missing", extra={"session_id": str(session_id)})
            return
        except Exception as exc:
            stack = traceback.format_exc()
            with session_scope(session_factory) as db:
                self._service_factory(db).mark_failed(session_id, exc, stack)
            raise JobExecutionError(str(job.job_id), job.task_type, str(exc), stack) from exc

    def _progress_reporter(self, job: ImportJob) -> ProgressCallback | None:
        heartbeat = self._heartbeat
        if heartbeat is None:
            return None

        def _report(processed: int, total: int) -> None:
            progress = progress_percentage(processed, total, ImportStatus.IMPORTING)
            try:
                heartbeat(job.job_id, progress)
            except OperationalError as exc:
                # SQLite allows one writer; the apply transaction holds it
                logger.warning(
                    "job_heartbeat_failed",
                    extra={"job_id": str(job.job_id), "progress": progress, "error": str(exc)},
                )
                return
            logger.debug("job_heartbeat", extra={"job_id": str(job.job_id), "progress": progress})

        return _report


class RollbackImportTask:
    """Deletes the records an import created."""

    task_type = ROLLBACK_IMPORT_TASK
    description = "Reverse the creations of a completed import session"

    def __init__(self, service_factory: ServiceFactory):
        self._service_factory = service_factory

    def run(self, job: ImportJob, session_factory: Callable[[], Session]) -> None:
        session_id, actor_id = _job_subject(job)
        try:
            with session_scope(session_factory) as db:
                self._service_factory(db).apply_rollback(session_id, actor_id)
        except Exception as exc:
            raise JobExecutionError(
                str(job.job_id), job.task_type, str(exc), traceback.format_exc(),
            ) from exc
