"""
JobOrchestrator -- wiring for the import job system.

Contract:
    Composes the TaskRegistry with the apply and rollback tasks, and hands
    out JobQueue, ImportService and ImportWorker instances that share one
    Clock and one AppConfig.  Single place where these dependencies meet.

Architecture: coop_batch (top-level).  The canonical entry point for the
    API process and the standalone worker script.
"""

from __future__ import annotations

from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from coop_config.schema import AppConfig
from coop_kernel.db.engine import session_scope
from coop_kernel.domain.clock import Clock, SystemClock
from coop_kernel.logging_config import get_logger

from coop_ingestion.adapters import TabularFileReader
from coop_ingestion.domain.validators import ValidationEngine
from coop_ingestion.importers import ImporterRegistry, default_importer_registry
from coop_ingestion.services.import_service import ImportService
from coop_ingestion.services.template_service import TemplateService

from coop_batch.services.queue import JobQueue
from coop_batch.services.worker import ImportWorker
from coop_batch.tasks.base import TaskRegistry
from coop_batch.tasks.import_tasks import ApplyImportTask, RollbackImportTask

logger = get_logger("batch.orchestrator")


class JobOrchestrator:
    """DI container for import sessions and their jobs.

    Non-goals:
        - Does NOT start the worker automatically -- caller decides.
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: AppConfig | None = None,
        clock: Clock | None = None,
        reader: TabularFileReader | None = None,
        engine: ValidationEngine | None = None,
        importers: ImporterRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or AppConfig()
        self._clock = clock or SystemClock()
        self._reader = reader or TabularFileReader()
        self._engine = engine or ValidationEngine()
        self._importers = importers or default_importer_registry(
            password_hash_rounds=self._config.imports.password_hash_rounds,
        )
        self._task_registry = TaskRegistry((
            ApplyImportTask(self.import_service, heartbeat=self.heartbeat),
            RollbackImportTask(self.import_service),
        ))
        logger.debug(
            "job_orchestrator_ready",
            extra={"tasks": list(self._task_registry.list_tasks())},
        )

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    def create_queue(self, session: Session) -> JobQueue:
        return JobQueue(session, self._clock, self._config.queue, self._task_registry)

    def import_service(self, session: Session) -> ImportService:
        """ImportService bound to ``session`` with a queue on the same session."""
        return ImportService(
            session=session,
            clock=self._clock,
            settings=self._config,
            queue=self.create_queue(session),
            reader=self._reader,
            engine=self._engine,
            importers=self._importers,
        )

    def template_service(self, session: Session) -> TemplateService:
        return TemplateService(session, self._clock)

    def create_worker(self) -> ImportWorker:
        return ImportWorker(
            session_factory=self._session_factory,
            task_registry=self._task_registry,
            clock=self._clock,
            settings=self._config.queue,
        )

    def heartbeat(self, job_id: UUID, progress: int) -> None:
        """Refresh a running job's heartbeat in its own committed unit of work."""
        with session_scope(self._session_factory) as db:
            self.create_queue(db).heartbeat(job_id, progress)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session_factory(self) -> Callable[[], Session]:
        return self._session_factory

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry
