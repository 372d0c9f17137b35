"""
Declarative base and portable column types for every ORM model.

Architecture: coop_kernel/db.  Lowest import target in the kernel; model
    modules in every package import from here and nothing here imports back.

Invariants enforced:
    - Primary keys are uuid4 values stored as 36-character strings, so the
      PostgreSQL production schema and the SQLite test schema match.
    - Money is Numeric(18, 2); spreadsheet amounts never become floats.
    - JSON documents (mappings, rules, ledgers, reports) use JSONB on
      PostgreSQL and plain JSON elsewhere.
    - Constraint and index names follow one naming convention.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import JSON, DateTime, MetaData, Numeric, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class UUIDString(TypeDecorator):
    """UUID stored as String(36); accepts UUID objects or their string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> str | None:
        if value is None:
            return None
        return str(value if isinstance(value, PyUUID) else PyUUID(str(value)))

    def process_result_value(self, value: Any, dialect) -> PyUUID | None:
        return None if value is None else PyUUID(str(value))


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 2),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Abstract base carrying who created a row and when.

    ``created_at`` / ``updated_at`` fall back to the database clock; services
    holding a Clock set them explicitly so ordering is deterministic under
    test.  ``created_by_id`` is mandatory: imports always act for a user.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    created_by_id: Mapped[PyUUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(nullable=True)
