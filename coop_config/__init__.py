"""
coop_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the resulting settings
    objects through their constructors and never read files or
    environment variables themselves.

Resolution order:
    1. ``sets/default.yaml`` shipped with the package.
    2. The file named by ``COOP_IMPORT_CONFIG``, if set.
    3. ``COOP_IMPORT_DATABASE_URL`` overrides ``database.url``.

Failure modes:
    - ``FileNotFoundError`` -- COOP_IMPORT_CONFIG points at a missing file.
    - ``ValueError`` -- unknown sections or keys.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from coop_config.loader import load_config
from coop_config.schema import (
    AppConfig,
    DatabaseSettings,
    ImportSettings,
    LoggingSettings,
    PreviewSettings,
    QueueSettings,
    UploadSettings,
)

_logger = logging.getLogger("coop.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "COOP_IMPORT_CONFIG"
DATABASE_URL_ENV = "COOP_IMPORT_DATABASE_URL"


def get_active_config(config_path: Path | None = None) -> AppConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Optional override file.  When omitted the
            ``COOP_IMPORT_CONFIG`` environment variable is consulted.
    """
    paths = [_DEFAULT_CONFIG_FILE]
    override = config_path or os.environ.get(CONFIG_PATH_ENV)
    if override:
        paths.append(Path(override))

    config = load_config(*paths)

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    _logger.info(
        "config_loaded",
        extra={
            "source_path": config.source_path,
            "dialect": config.database.url.split(":", 1)[0],
            "queue_max_attempts": config.queue.max_attempts,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "AppConfig",
    "DatabaseSettings",
    "ImportSettings",
    "LoggingSettings",
    "PreviewSettings",
    "QueueSettings",
    "UploadSettings",
]
