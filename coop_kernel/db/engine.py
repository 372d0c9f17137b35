"""
Engine construction, the process-wide session factory and ``session_scope``.

Architecture: coop_kernel/db.  The API process and the standalone worker
    call ``init_engine_from_url()`` once at start-up; tests build private
    engines with ``create_engine_for_url()`` and never touch module state.

Invariants enforced:
    - PostgreSQL runs READ COMMITTED behind a pre-pinged QueuePool.
    - On SQLite, SQLAlchemy issues BEGIN itself; without that the per-row
      SAVEPOINTs of the import loop would not nest inside the job
      transaction.  Foreign keys are enforced per connection.
    - ``session_scope()`` is the only place that commits.

Failure modes:
    - RuntimeError from ``get_engine()`` / ``get_session_factory()`` before
      ``init_engine_from_url()`` ran.
"""

import atexit
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from coop_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_state: dict[str, object] = {"engine": None, "factory": None}

_POSTGRES_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "isolation_level": "READ COMMITTED",
}


def _sqlite_engine(database_url: str, echo: bool) -> Engine:
    engine = create_engine(database_url, echo=echo, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):
        # Disable pysqlite's implicit transactions; the "begin" hook owns them
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _on_begin(connection):
        connection.exec_driver_sql("BEGIN")

    return engine


def create_engine_for_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """Build an Engine for ``database_url`` without registering it globally."""
    if database_url.startswith("sqlite"):
        return _sqlite_engine(database_url, echo)
    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        **_POSTGRES_POOL_OPTIONS,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """Create the process-wide engine and session factory (replacing any previous pair)."""
    previous = _state["engine"]
    if isinstance(previous, Engine):
        previous.dispose()

    engine = create_engine_for_url(
        database_url, echo=echo, pool_size=pool_size, max_overflow=max_overflow,
    )
    _state["engine"] = engine
    _state["factory"] = sessionmaker(bind=engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return engine


def get_engine() -> Engine:
    engine = _state["engine"]
    if engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return engine


def get_session_factory() -> sessionmaker[Session]:
    """The factory the API routes and the worker open their units of work from."""
    factory = _state["factory"]
    if factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(factory: Callable[[], Session] | None = None) -> Iterator[Session]:
    """One unit of work: commit on clean exit, roll back and re-raise otherwise.

    Usage::

        with session_scope(factory) as session:
            ImportService(session, ...).validate(session_id)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.debug("transaction_rolled_back", extra={"error_type": type(exc).__name__})
        raise
    finally:
        session.close()


def import_all_orm_models() -> None:
    """Import every models package so Base.metadata knows all tables."""
    import coop_batch.models  # noqa: F401
    import coop_ingestion.models  # noqa: F401
    import coop_kernel.models  # noqa: F401


def create_tables(engine: Engine | None = None) -> None:
    from coop_kernel.db.base import Base

    target = engine or get_engine()
    import_all_orm_models()
    Base.metadata.create_all(target)
    logger.info(
        "tables_created",
        extra={"dialect": target.dialect.name, "tables": len(Base.metadata.tables)},
    )


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every table. Destroys data."""
    from coop_kernel.db.base import Base

    target = engine or get_engine()
    import_all_orm_models()
    Base.metadata.drop_all(target)
    logger.warning("tables_dropped", extra={"dialect": target.dialect.name})


@atexit.register
def _dispose_on_exit() -> None:
    engine = _state["engine"]
    if isinstance(engine, Engine):
        engine.dispose()
