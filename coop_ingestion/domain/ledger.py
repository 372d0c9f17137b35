"""
Apply-phase results: typed rollback ledgers and per-row reports.

Contract:
    Every importer returns a frozen ``ProcessResult``.  Its ledger records
    the ids of records *created* by the run and nothing else: updates are
    not reversible.  Ledgers serialize to a single-key JSON object whose key
    names the creation bucket (``createdUsers``, ``createdLoans``,
    ``createdContributions``) and deserialize by import type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar
from uuid import UUID

from coop_ingestion.domain.types import ImportType


# -----------------------------------------------------------------------------
# Rollback ledgers
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RollbackLedger:
    """Base ledger: ids created by one apply run, tagged by bucket."""

    bucket: ClassVar[str] = ""
    created_ids: tuple[UUID, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.created_ids

    def to_json(self) -> dict[str, Any]:
        return {self.bucket: [str(i) for i in self.created_ids]}


@dataclass(frozen=True)
class CreatedUserIds(RollbackLedger):
    bucket: ClassVar[str] = "createdUsers"


@dataclass(frozen=True)
class CreatedLoanIds(RollbackLedger):
    bucket: ClassVar[str] = "createdLoans"


@dataclass(frozen=True)
class CreatedContributionIds(RollbackLedger):
    bucket: ClassVar[str] = "createdContributions"


@dataclass(frozen=True)
class EmptyLedger(RollbackLedger):
    """Ledger of import types that do not track creations."""

    def to_json(self) -> dict[str, Any]:
        return {}


LEDGER_TYPES: dict[ImportType, type[RollbackLedger]] = {
    ImportType.USERS: CreatedUserIds,
    ImportType.LOANS: CreatedLoanIds,
    ImportType.CONTRIBUTIONS: CreatedContributionIds,
    ImportType.GUARANTEES: EmptyLedger,
    ImportType.PAYMENTS: EmptyLedger,
}


def ledger_from_json(import_type: ImportType, data: dict[str, Any] | None) -> RollbackLedger:
    """Rebuild the typed ledger stored on a session row."""
    ledger_cls = LEDGER_TYPES[import_type]
    if not data or ledger_cls is EmptyLedger:
        return ledger_cls()
    return ledger_cls(created_ids=tuple(UUID(str(i)) for i in data.get(ledger_cls.bucket, ())))


# -----------------------------------------------------------------------------
# Reports
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class SuccessEntry:
    """A created or updated record, by source row."""

    row: int
    entity_id: UUID
    reference: str | None = None  # natural key or generated number

    def to_json(self) -> dict[str, Any]:
        return {"row": self.row, "id": str(self.entity_id), "reference": self.reference}


@dataclass(frozen=True)
class RowError:
    """A failed or skipped row and why."""

    row: int
    message: str
    code: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {"row": self.row, "error": self.message, "code": self.code, "data": self.data}


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one importer apply run."""

    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    ledger: RollbackLedger = field(default_factory=EmptyLedger)
    created: tuple[SuccessEntry, ...] = ()
    updated: tuple[SuccessEntry, ...] = ()
    errors: tuple[RowError, ...] = ()
    can_rollback: bool = False

    def success_report(self) -> dict[str, Any]:
        return {
            "created": [e.to_json() for e in self.created],
            "updated": [e.to_json() for e in self.updated],
        }

    def error_report(self) -> dict[str, Any]:
        return {"errors": [e.to_json() for e in self.errors]}
