"""
Pytest fixtures for the import pipeline test suite.

Provides:
- File-backed SQLite engines with every table created (one database per test)
- Session and session-factory fixtures
- A deterministic clock and an AppConfig whose uploads land in tmp_path
- Structured log capture

SQLite runs with the same BEGIN/SAVEPOINT hooks the production engine
factory installs, so the per-row savepoints behave as on PostgreSQL.
"""

import json
import logging
from io import StringIO
from pathlib import Path
from typing import Callable
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from coop_batch.orchestrator import JobOrchestrator
from coop_config.schema import AppConfig, ImportSettings, QueueSettings, UploadSettings
from coop_kernel.db.engine import create_engine_for_url, create_tables
from coop_kernel.domain.clock import DeterministicClock
from coop_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from coop_kernel.models import User


TEST_ACTOR_ID = UUID("00000000-0000-4000-8000-000000000001")
OTHER_ACTOR_ID = UUID("00000000-0000-4000-8000-000000000002")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture coop.* logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, import_service):
            ...
            logs = captured_logs()
            assert any(r["message"] == "import_validated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("coop")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'coop_import_test.db'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """A Session for direct service tests; never committed."""
    db = session_factory()
    yield db
    db.rollback()
    db.close()


# =============================================================================
# Common collaborators
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def other_actor_id() -> UUID:
    return OTHER_ACTOR_ID


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Defaults, with uploads in tmp_path, cheap bcrypt and no worker thread."""
    return AppConfig(
        upload=UploadSettings(upload_dir=tmp_path / "uploads"),
        imports=ImportSettings(password_hash_rounds=4),
        queue=QueueSettings(backoff_base_ms=1000, worker_enabled=False),
    )


@pytest.fixture
def orchestrator(session_factory, app_config, deterministic_clock) -> JobOrchestrator:
    return JobOrchestrator(session_factory, config=app_config, clock=deterministic_clock)


@pytest.fixture
def write_file(tmp_path) -> Callable[..., Path]:
    """Write a source file under tmp_path/src and return its path."""

    def _write(name: str, content: str | bytes) -> Path:
        directory = tmp_path / "src"
        directory.mkdir(exist_ok=True)
        path = directory / name
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_user(test_actor_id) -> Callable[..., User]:
    """Add a member row to a session and flush it."""

    def _make(db: Session, email: str, first_name: str = "Existing", last_name: str = "Member", **kwargs) -> User:
        user = User(
            id=uuid4(),
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash="not-a-real-hash",
            created_by_id=test_actor_id,
            **kwargs,
        )
        db.add(user)
        db.flush()
        return user

    return _make
