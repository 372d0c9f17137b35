"""
Importer protocol, the shared row loop, and ImporterRegistry.

Contract:
    ``Importer`` is the strategy interface the apply task dispatches to by
    ``ImportType``.  ``apply()`` maps every row, decides create / update /
    skip per natural key, and returns a frozen ``ProcessResult``; ``rollback()``
    deletes the ids in a ledger and returns the number of rows removed.

Architecture:
    coop_ingestion/importers.  Importers receive the caller's SQLAlchemy
    Session as the unit of work and NEVER commit it.

Invariants enforced:
    - SAVEPOINT per row: a failing row is rolled back on its own and
      counted, the enclosing transaction stays usable.
    - Only created ids enter the rollback ledger; updates are not reversible.
"""

from __future__ import annotations

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, ClassVar, Mapping, Protocol, Sequence, runtime_checkable
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.orm import Session

from coop_kernel.domain.clock import Clock
from coop_kernel.exceptions import BusinessRuleError
from coop_kernel.logging_config import get_logger

from coop_ingestion.domain.ledger import (
    EmptyLedger,
    ProcessResult,
    RollbackLedger,
    RowError,
    SuccessEntry,
)
from coop_ingestion.domain.types import ImportType, ValidationOptions
from coop_ingestion.mapping import FieldMapper
from coop_ingestion.models.session import to_json_safe

logger = get_logger("ingestion.importers")

# (processed rows, total rows)
ProgressCallback = Callable[[int, int], None]


# =============================================================================
# Supporting types
# =============================================================================


@dataclass(frozen=True)
class ApplyContext:
    """Per-run inputs shared by every row of one apply."""

    session_id: UUID
    actor_id: UUID
    clock: Clock
    options: ValidationOptions = field(default_factory=ValidationOptions)
    on_progress: ProgressCallback | None = None
    progress_every: int = 100

    def report_progress(self, processed: int, total: int) -> None:
        """Forward ``(processed, total)`` once every ``progress_every`` rows."""
        if self.on_progress is None or processed <= 0:
            return
        if processed % max(self.progress_every, 1) == 0:
            self.on_progress(processed, total)


@dataclass(frozen=True)
class RowOutcome:
    """What happened to one row that reached the natural-key lookup."""

    action: str  # "created" | "updated" | "skipped"
    entity_id: UUID | None = None
    reference: str | None = None
    message: str | None = None

    @classmethod
    def created(cls, entity_id: UUID, reference: str | None = None) -> RowOutcome:
        return cls("created", entity_id, reference)

    @classmethod
    def updated(cls, entity_id: UUID, reference: str | None = None) -> RowOutcome:
        return cls("updated", entity_id, reference)

    @classmethod
    def skipped(cls, message: str, reference: str | None = None) -> RowOutcome:
        return cls("skipped", None, reference, message)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def text_or_none(value: Any) -> str | None:
    if is_blank(value):
        return None
    return str(value).strip()


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Parse an amount cell; the message names the offending field."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid {field_name}: {value}")
    try:
        return Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid {field_name}: {value}") from None


# =============================================================================
# Importer protocol
# =============================================================================


@runtime_checkable
class Importer(Protocol):
    """Strategy applying one import type's rows to the entity store."""

    @property
    def import_type(self) -> ImportType: ...

    @property
    def can_rollback(self) -> bool: ...

    def apply(
        self,
        rows: Sequence[Sequence[Any]],
        mapper: FieldMapper,
        db: Session,
        context: ApplyContext,
    ) -> ProcessResult:
        ...

    def rollback(self, ledger: RollbackLedger, db: Session) -> int:
        ...


# =============================================================================
# Shared row loop
# =============================================================================


class RowImporter(ABC):
    """Base class for importers that create or update one entity per row.

    Subclasses set ``import_type``, ``ledger_type``, ``model`` and
    ``required_fields`` and implement ``apply_row()``, which either returns
    a ``RowOutcome`` or raises.  ``BusinessRuleError`` is an expected row
    failure; anything else is logged and counted the same way.

    Progress goes to ``context.report_progress`` between rows, so a
    long apply keeps its job's heartbeat fresh.
    """

    import_type: ClassVar[ImportType]
    ledger_type: ClassVar[type[RollbackLedger]] = EmptyLedger
    model: ClassVar[Any] = None
    required_fields: ClassVar[tuple[str, ...]] = ()
    can_rollback: ClassVar[bool] = True

    @abstractmethod
    def apply_row(
        self,
        record: Mapping[str, Any],
        row_number: int,
        db: Session,
        context: ApplyContext,
    ) -> RowOutcome:
        ...

    def missing_fields_message(self) -> str:
        return f"Missing required fields ({', '.join(self.required_fields)})"

    def apply(
        self,
        rows: Sequence[Sequence[Any]],
        mapper: FieldMapper,
        db: Session,
        context: ApplyContext,
    ) -> ProcessResult:
        processed = success = failed = skipped = 0
        created_ids: list[UUID] = []
        created: list[SuccessEntry] = []
        updated: list[SuccessEntry] = []
        errors: list[RowError] = []
        total = len(rows)

        for index, row in enumerate(rows):
            context.report_progress(index, total)
            row_number = index + 1
            processed += 1
            record = mapper.map_row(row)

            if any(is_blank(record.get(f)) for f in self.required_fields):
                skipped += 1
                errors.append(RowError(
                    row=row_number,
                    message=self.missing_fields_message(),
                    code="MISSING_REQUIRED_FIELDS",
                    data=to_json_safe(dict(record)),
                ))
                continue

            savepoint = db.begin_nested()
            try:
                outcome = self.apply_row(record, row_number, db, context)
                db.flush()
            except BusinessRuleError as exc:
                savepoint.rollback()
                failed += 1
                errors.append(RowError(
                    row=row_number,
                    message=str(exc),
                    code=exc.code,
                    data=to_json_safe(dict(record)),
                ))
                continue
            except Exception as exc:
                savepoint.rollback()
                failed += 1
                errors.append(RowError(
                    row=row_number,
                    message=str(exc),
                    code="UNHANDLED_EXCEPTION",
                    data=to_json_safe(dict(record)),
                ))
                logger.warning(
                    "import_row_failed",
                    extra={
                        "row_number": row_number,
                        "import_type": self.import_type.value,
                        "error": str(exc),
                    },
                )
                continue

            if outcome.action == "skipped":
                savepoint.rollback()
                skipped += 1
                errors.append(RowError(
                    row=row_number,
                    message=outcome.message or "Row skipped",
                    code="ROW_SKIPPED",
                    data=to_json_safe(dict(record)),
                ))
                continue

            savepoint.commit()
            success += 1
            entry = SuccessEntry(row_number, outcome.entity_id, outcome.reference)
            if outcome.action == "created":
                created.append(entry)
                created_ids.append(outcome.entity_id)
            else:
                updated.append(entry)

        logger.info(
            "import_rows_applied",
            extra={
                "import_type": self.import_type.value,
                "processed": processed,
                "success": success,
                "failed": failed,
                "skipped": skipped,
            },
        )

        return ProcessResult(
            processed=processed,
            success=success,
            failed=failed,
            skipped=skipped,
            ledger=self.ledger_type(created_ids=tuple(created_ids)),
            created=tuple(created),
            updated=tuple(updated),
            errors=tuple(errors),
            can_rollback=self.can_rollback,
        )

    def rollback(self, ledger: RollbackLedger, db: Session) -> int:
        """Delete the ledger's created ids in the caller's transaction."""
        if ledger.is_empty or self.model is None:
            return 0
        result = db.execute(
            delete(self.model)
            .where(self.model.id.in_(ledger.created_ids))
            .execution_options(synchronize_session=False)
        )
        db.expire_all()
        logger.info(
            "import_rollback_applied",
            extra={
                "import_type": self.import_type.value,
                "requested": len(ledger.created_ids),
                "deleted": result.rowcount,
            },
        )
        return result.rowcount


# =============================================================================
# ImporterRegistry
# =============================================================================


class ImporterRegistry:
    """Registry mapping ImportType to its Importer strategy."""

    def __init__(self) -> None:
        self._importers: dict[ImportType, Importer] = {}

    def register(self, importer: Importer) -> None:
        """Raises ValueError when the import type already has an importer."""
        if importer.import_type in self._importers:
            raise ValueError(
                f"Importer for '{importer.import_type.value}' is already registered"
            )
        self._importers[importer.import_type] = importer

    def get(self, import_type: ImportType) -> Importer:
        try:
            return self._importers[import_type]
        except KeyError:
            raise KeyError(
                f"No importer registered for '{import_type.value}'. "
                f"Available: {sorted(t.value for t in self._importers)}"
            ) from None

    def __contains__(self, import_type: ImportType) -> bool:
        return import_type in self._importers

    def __len__(self) -> int:
        return len(self._importers)


_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def reference_number(prefix: str, clock: Clock, length: int = 6) -> str:
    """``<prefix>-<epoch ms>-<random base36>`` (session and loan numbers)."""
    epoch_ms = int(clock.now().timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(length))
    return f"{prefix}-{epoch_ms}-{suffix}"
