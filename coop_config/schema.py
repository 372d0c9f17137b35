"""
Configuration schema: frozen dataclasses for runtime settings.

Every parsed object is immutable.  Defaults here match the shipped
``sets/default.yaml`` so a partial override file only needs the keys it
changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_ALLOWED_MIME_TYPES: tuple[str, ...] = (
    "text/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
)


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///coop_import.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10


@dataclass(frozen=True)
class UploadSettings:
    """Where uploads are stored and what is accepted."""

    upload_dir: Path = Path("uploads/imports")
    max_file_size: int = 50 * 1024 * 1024  # 50 MB
    allowed_mime_types: tuple[str, ...] = DEFAULT_ALLOWED_MIME_TYPES


@dataclass(frozen=True)
class PreviewSettings:
    sample_size: int = 10


@dataclass(frozen=True)
class ImportSettings:
    """Apply-phase knobs."""

    default_page_size: int = 20
    max_page_size: int = 100
    password_hash_rounds: int = 12


@dataclass(frozen=True)
class QueueSettings:
    """Job queue retry and polling policy."""

    max_attempts: int = 3
    backoff_base_ms: int = 2000
    poll_interval_seconds: float = 1.0
    visibility_timeout_seconds: int = 900
    heartbeat_every_rows: int = 100
    worker_enabled: bool = True


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    """Root configuration object returned by ``get_active_config()``."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    upload: UploadSettings = field(default_factory=UploadSettings)
    preview: PreviewSettings = field(default_factory=PreviewSettings)
    imports: ImportSettings = field(default_factory=ImportSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    source_path: str | None = None
