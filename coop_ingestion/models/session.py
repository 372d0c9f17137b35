"""
Import ORM models.

Contract:
    ImportSessionModel persists one upload's lifecycle: file descriptors,
    status, mapping, counters, timing, rollback ledger and reports.
    ValidationFindingModel rows belong to exactly one session and are
    cascade-deleted with it.  ImportTemplateModel stores reusable mappings.
    Each model has ``to_dto()`` (and findings/templates ``from_dto()``).

Architecture: coop_ingestion/models. Imports from coop_kernel.db.base only
    (plus the ingestion domain types for DTO conversion).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coop_kernel.db.base import JSONDocument, TrackedBase, UUIDString

from coop_ingestion.domain.types import (
    FileType,
    ImportSession,
    ImportStatus,
    ImportTemplate,
    ImportType,
    Severity,
    ValidationFinding,
    ValidationOptions,
    mappings_from_json,
)


def to_json_safe(obj: Any) -> Any:
    """Convert values to JSON-serializable form (Decimal -> str, etc.)."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json_safe(v) for v in obj]
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    return obj


class ImportSessionModel(TrackedBase):
    """One upload and its import lifecycle."""

    __tablename__ = "import_sessions"

    __table_args__ = (
        Index("ix_import_sessions_owner_created", "created_by_id", "created_at"),
        Index("ix_import_sessions_status", "status"),
    )

    session_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    file_type: Mapped[str] = mapped_column(String(10), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    has_headers: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    delimiter: Mapped[str] = mapped_column(String(5), nullable=False, default=",")
    encoding: Mapped[str] = mapped_column(String(30), nullable=False, default="utf8")
    import_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    column_mapping: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)
    validation_rules: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)

    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_time: Mapped[int | None] = mapped_column(Integer, nullable=True)

    can_rollback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rollback_data: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    rolled_back_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rolled_back_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    success_report: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    error_report: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)

    template_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("import_templates.id", ondelete="SET NULL"), nullable=True,
    )
    session_metadata: Mapped[dict | None] = mapped_column("metadata", JSONDocument, nullable=True)

    findings: Mapped[list["ValidationFindingModel"]] = relationship(
        "ValidationFindingModel",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ValidationFindingModel.row_number",
    )

    def to_dto(self) -> ImportSession:
        return ImportSession(
            session_id=self.id,
            session_number=self.session_number,
            file_name=self.file_name,
            original_name=self.original_name,
            file_size=self.file_size,
            file_type=FileType(self.file_type),
            file_path=self.file_path,
            import_type=ImportType(self.import_type),
            status=ImportStatus(self.status),
            created_by=self.created_by_id,
            has_headers=self.has_headers,
            delimiter=self.delimiter,
            encoding=self.encoding,
            column_mapping=mappings_from_json(self.column_mapping),
            validation_rules=ValidationOptions.from_json(self.validation_rules),
            total_rows=self.total_rows,
            processed_rows=self.processed_rows,
            success_rows=self.success_rows,
            failed_rows=self.failed_rows,
            skipped_rows=self.skipped_rows,
            started_at=self.started_at,
            completed_at=self.completed_at,
            processing_time=self.processing_time,
            can_rollback=self.can_rollback,
            rollback_data=self.rollback_data,
            rolled_back_at=self.rolled_back_at,
            rolled_back_by=self.rolled_back_by,
            success_report=self.success_report,
            error_report=self.error_report,
            template_id=self.template_id,
            metadata=self.session_metadata,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ValidationFindingModel(TrackedBase):
    """A persisted validation finding for one session row."""

    __tablename__ = "import_validation_findings"

    __table_args__ = (
        Index("ix_import_findings_session_severity", "session_id", "severity"),
        Index("ix_import_findings_session_row", "session_id", "row_number"),
    )

    session_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("import_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    column_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    field_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    error_code: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    expected_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    actual_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggested_fix: Mapped[str | None] = mapped_column(Text, nullable=True)
    can_auto_fix: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    was_auto_fixed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    session: Mapped["ImportSessionModel"] = relationship(
        "ImportSessionModel", back_populates="findings",
    )

    def to_dto(self) -> ValidationFinding:
        return ValidationFinding(
            row_number=self.row_number,
            severity=Severity(self.severity),
            error_code=self.error_code,
            message=self.message,
            column_name=self.column_name,
            field_name=self.field_name,
            expected_value=self.expected_value,
            actual_value=self.actual_value,
            suggested_fix=self.suggested_fix,
            can_auto_fix=self.can_auto_fix,
            was_auto_fixed=self.was_auto_fixed,
        )

    @classmethod
    def from_dto(
        cls,
        dto: ValidationFinding,
        session_id: UUID,
        created_by_id: UUID,
    ) -> ValidationFindingModel:
        return cls(
            session_id=session_id,
            row_number=dto.row_number,
            column_name=dto.column_name,
            field_name=dto.field_name,
            severity=dto.severity.value,
            error_code=dto.error_code,
            message=dto.message,
            expected_value=dto.expected_value,
            actual_value=dto.actual_value,
            suggested_fix=dto.suggested_fix,
            can_auto_fix=dto.can_auto_fix,
            was_auto_fixed=dto.was_auto_fixed,
            created_by_id=created_by_id,
        )


class ImportTemplateModel(TrackedBase):
    """Reusable column mapping and rules for one import type."""

    __tablename__ = "import_templates"

    __table_args__ = (
        Index("ix_import_templates_type_active", "import_type", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    import_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    column_mapping: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)
    validation_rules: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    transform_rules: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)

    def to_dto(self) -> ImportTemplate:
        return ImportTemplate(
            template_id=self.id,
            name=self.name,
            import_type=ImportType(self.import_type),
            column_mapping=mappings_from_json(self.column_mapping),
            validation_rules=ValidationOptions.from_json(self.validation_rules),
            transform_rules=self.transform_rules,
            description=self.description,
            is_default=self.is_default,
            is_active=self.is_active,
            created_by=self.created_by_id,
            created_at=self.created_at,
        )
