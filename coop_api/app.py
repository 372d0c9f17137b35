"""
FastAPI application factory.

``create_app()`` wires configuration, the database session factory and the
JobOrchestrator onto ``app.state``.  When the queue worker is enabled it
runs inside the API process for the lifetime of the app; set
``queue.worker_enabled: false`` and run ``scripts/run_worker.py`` to
process jobs elsewhere.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI
from sqlalchemy.orm import Session

from coop_batch.orchestrator import JobOrchestrator
from coop_config import AppConfig, get_active_config
from coop_kernel.db.engine import get_session_factory, init_engine_from_url
from coop_kernel.domain.clock import Clock
from coop_kernel.logging_config import configure_logging, get_logger

from coop_api.errors import register_exception_handlers
from coop_api.routers import imports_router, templates_router

logger = get_logger("api.app")


def create_app_lifespan(orchestrator: JobOrchestrator, start_worker: bool):
    @asynccontextmanager
    async def _app_lifespan(_app: FastAPI):
        worker = orchestrator.create_worker() if start_worker else None
        if worker is not None:
            worker.start()
        logger.info("api_started", extra={"worker_enabled": worker is not None})
        try:
            yield
        finally:
            if worker is not None:
                worker.stop()
            logger.info("api_stopped")

    return _app_lifespan


def create_app(
    config: AppConfig | None = None,
    session_factory: Callable[[], Session] | None = None,
    clock: Clock | None = None,
    start_worker: bool | None = None,
) -> FastAPI:
    config = config or get_active_config()
    configure_logging(level=config.logging.level)

    if session_factory is None:
        init_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
        )
        session_factory = get_session_factory()

    orchestrator = JobOrchestrator(session_factory, config=config, clock=clock)
    if start_worker is None:
        start_worker = config.queue.worker_enabled

    app = FastAPI(
        title="Co-op Import",
        lifespan=create_app_lifespan(orchestrator, start_worker),
    )
    app.state.orchestrator = orchestrator
    app.include_router(imports_router)
    app.include_router(templates_router)
    register_exception_handlers(app)
    return app
