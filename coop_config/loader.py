"""
Configuration Loader (``coop_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into typed
``coop_config.schema`` dataclass instances.  Runtime callers go through
``coop_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key  -> ``ValueError`` (typos must not be silently ignored).
"""

from __future__ import annotations

from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from coop_config.schema import (
    AppConfig,
    DatabaseSettings,
    ImportSettings,
    LoggingSettings,
    PreviewSettings,
    QueueSettings,
    UploadSettings,
)

_SECTIONS: dict[str, type] = {
    "database": DatabaseSettings,
    "upload": UploadSettings,
    "preview": PreviewSettings,
    "imports": ImportSettings,
    "queue": QueueSettings,
    "logging": LoggingSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its top-level mapping."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def _parse_section(name: str, base: Any, data: dict[str, Any]) -> Any:
    known = {f.name for f in fields(base)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in config section '{name}': {sorted(unknown)}")

    values: dict[str, Any] = {}
    for key, raw in data.items():
        if key == "upload_dir":
            values[key] = Path(raw)
        elif key == "allowed_mime_types":
            values[key] = tuple(str(m) for m in raw)
        else:
            values[key] = raw
    return replace(base, **values)


def parse_config(data: dict[str, Any], base: AppConfig | None = None) -> AppConfig:
    """Overlay a parsed YAML mapping on ``base`` (defaults when omitted)."""
    config = base or AppConfig()
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config sections: {sorted(unknown)}")

    updates: dict[str, Any] = {}
    for name, section_data in data.items():
        if section_data is None:
            continue
        if not isinstance(section_data, dict):
            raise ValueError(f"Config section '{name}' must be a mapping")
        updates[name] = _parse_section(name, getattr(config, name), section_data)
    return replace(config, **updates)


def load_config(*paths: Path) -> AppConfig:
    """Load and merge config files left to right."""
    config = AppConfig()
    for path in paths:
        config = parse_config(load_yaml_file(path), base=config)
        config = replace(config, source_path=str(path))
    return config
