"""
Domain types for the import pipeline: pure frozen dataclasses and enums.

ZERO I/O.  DTOs are immutable; JSON round-tripping for the session row and
the REST layer lives on the DTOs themselves (camelCase keys on the wire).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class ImportType(str, Enum):
    """Entity type an import session targets."""

    USERS = "USERS"
    LOANS = "LOANS"
    CONTRIBUTIONS = "CONTRIBUTIONS"
    GUARANTEES = "GUARANTEES"
    PAYMENTS = "PAYMENTS"


class ImportStatus(str, Enum):
    """Lifecycle status of an import session (see domain/lifecycle.py)."""

    PENDING = "PENDING"
    PARSING = "PARSING"
    MAPPED = "MAPPED"
    VALIDATING = "VALIDATING"
    IMPORTING = "IMPORTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class FileType(str, Enum):
    CSV = "CSV"
    EXCEL = "EXCEL"


class Severity(str, Enum):
    """Finding severity. Only ERROR blocks an import."""

    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


class TransformKind(str, Enum):
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    TRIM = "trim"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class DuplicateHandling(str, Enum):
    """What the importer does when the natural key already exists."""

    SKIP = "skip"
    UPDATE = "update"
    ERROR = "error"


# -----------------------------------------------------------------------------
# Mapping
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldTransform:
    """Per-field value transform applied by the FieldMapper."""

    kind: TransformKind | None = None
    format: str | None = None  # strptime format for DATE
    default_value: Any = None

    def to_json(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value if self.kind else None,
            "format": self.format,
            "defaultValue": self.default_value,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> FieldTransform | None:
        if not data:
            return None
        raw_kind = data.get("kind") or data.get("type")
        return cls(
            kind=TransformKind(str(raw_kind).lower()) if raw_kind else None,
            format=data.get("format"),
            default_value=data.get("defaultValue", data.get("default_value")),
        )


@dataclass(frozen=True)
class FieldMapping:
    """One source column -> canonical field.

    ``column_index`` is the position of ``column_name`` in the column list
    the file produced when the mapping was saved.
    """

    column_name: str
    field_name: str
    transform: FieldTransform | None = None
    required: bool = False
    column_index: int | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "columnName": self.column_name,
            "fieldName": self.field_name,
            "transform": self.transform.to_json() if self.transform else None,
            "required": self.required,
            "columnIndex": self.column_index,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> FieldMapping:
        index = data.get("columnIndex")
        return cls(
            column_name=str(data["columnName"]),
            field_name=str(data["fieldName"]),
            transform=FieldTransform.from_json(data.get("transform")),
            required=bool(data.get("required", False)),
            column_index=int(index) if index is not None else None,
        )


def mappings_to_json(mappings: tuple[FieldMapping, ...] | list[FieldMapping]) -> list[dict[str, Any]]:
    return [m.to_json() for m in mappings]


def mappings_from_json(data: list[dict[str, Any]] | None) -> tuple[FieldMapping, ...]:
    return tuple(FieldMapping.from_json(item) for item in (data or []))


# -----------------------------------------------------------------------------
# Validation options
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationOptions:
    """Session-level validation and apply policy (``validationRules``)."""

    duplicate_handling: DuplicateHandling = DuplicateHandling.UPDATE
    email_validation: bool = True
    phone_validation: bool = True
    custom_rules: tuple[dict[str, Any], ...] = ()

    def to_json(self) -> dict[str, Any]:
        return {
            "duplicateHandling": self.duplicate_handling.value,
            "emailValidation": self.email_validation,
            "phoneValidation": self.phone_validation,
            "customRules": list(self.custom_rules),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> ValidationOptions:
        if not data:
            return cls()
        handling = data.get("duplicateHandling") or DuplicateHandling.UPDATE.value
        return cls(
            duplicate_handling=DuplicateHandling(str(handling).lower()),
            email_validation=bool(data.get("emailValidation", True)),
            phone_validation=bool(data.get("phoneValidation", True)),
            custom_rules=tuple(data.get("customRules") or ()),
        )


# -----------------------------------------------------------------------------
# Findings
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationFinding:
    """A single validation result tied to a row/column/field."""

    row_number: int  # 1-indexed data row
    severity: Severity
    error_code: str
    message: str
    column_name: str | None = None
    field_name: str | None = None
    expected_value: str | None = None
    actual_value: str | None = None
    suggested_fix: str | None = None
    can_auto_fix: bool = False
    was_auto_fixed: bool = False

    def to_json(self) -> dict[str, Any]:
        return {
            "rowNumber": self.row_number,
            "columnName": self.column_name,
            "fieldName": self.field_name,
            "severity": self.severity.value,
            "errorCode": self.error_code,
            "message": self.message,
            "expectedValue": self.expected_value,
            "actualValue": self.actual_value,
            "suggestedFix": self.suggested_fix,
            "canAutoFix": self.can_auto_fix,
            "wasAutoFixed": self.was_auto_fixed,
        }


# -----------------------------------------------------------------------------
# Session and template snapshots
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ImportSession:
    """Immutable snapshot of an import session row."""

    session_id: UUID
    session_number: str
    file_name: str
    original_name: str
    file_size: int
    file_type: FileType
    file_path: str
    import_type: ImportType
    status: ImportStatus
    created_by: UUID
    has_headers: bool = True
    delimiter: str = ","
    encoding: str = "utf8"
    column_mapping: tuple[FieldMapping, ...] = ()
    validation_rules: ValidationOptions = field(default_factory=ValidationOptions)
    total_rows: int = 0
    processed_rows: int = 0
    success_rows: int = 0
    failed_rows: int = 0
    skipped_rows: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    processing_time: int | None = None
    can_rollback: bool = False
    rollback_data: dict[str, Any] | None = None
    rolled_back_at: datetime | None = None
    rolled_back_by: UUID | None = None
    success_report: dict[str, Any] | None = None
    error_report: dict[str, Any] | None = None
    template_id: UUID | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "id": str(self.session_id),
            "sessionNumber": self.session_number,
            "fileName": self.file_name,
            "originalName": self.original_name,
            "fileSize": self.file_size,
            "fileType": self.file_type.value,
            "importType": self.import_type.value,
            "status": self.status.value,
            "hasHeaders": self.has_headers,
            "delimiter": self.delimiter,
            "encoding": self.encoding,
            "columnMapping": mappings_to_json(self.column_mapping),
            "validationRules": self.validation_rules.to_json(),
            "totalRows": self.total_rows,
            "processedRows": self.processed_rows,
            "successRows": self.success_rows,
            "failedRows": self.failed_rows,
            "skippedRows": self.skipped_rows,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "processingTime": self.processing_time,
            "canRollback": self.can_rollback,
            "rollbackData": self.rollback_data,
            "rolledBackAt": _iso(self.rolled_back_at),
            "rolledBackBy": str(self.rolled_back_by) if self.rolled_back_by else None,
            "successReport": self.success_report,
            "errorReport": self.error_report,
            "templateId": str(self.template_id) if self.template_id else None,
            "metadata": self.metadata,
            "userId": str(self.created_by),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class ImportTemplate:
    """Reusable mapping + rules for a given import type."""

    template_id: UUID
    name: str
    import_type: ImportType
    column_mapping: tuple[FieldMapping, ...] = ()
    validation_rules: ValidationOptions = field(default_factory=ValidationOptions)
    transform_rules: dict[str, Any] | None = None
    description: str | None = None
    is_default: bool = False
    is_active: bool = True
    created_by: UUID | None = None
    created_at: datetime | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "id": str(self.template_id),
            "name": self.name,
            "description": self.description,
            "importType": self.import_type.value,
            "isDefault": self.is_default,
            "isActive": self.is_active,
            "columnMapping": mappings_to_json(self.column_mapping),
            "validationRules": self.validation_rules.to_json(),
            "transformRules": self.transform_rules,
            "createdAt": _iso(self.created_at),
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
