"""Database layer: declarative base, portable types, engine and sessions."""

from coop_kernel.db.base import Base, JSONDocument, TrackedBase, UUIDString
from coop_kernel.db.engine import (
    create_engine_for_url,
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "create_engine_for_url",
    "create_tables",
    "session_scope",
    "Base",
    "TrackedBase",
    "UUIDString",
    "JSONDocument",
]
