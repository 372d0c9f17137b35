"""
GUARANTEES and PAYMENTS importers.

Both are registered so every import type resolves to a strategy, but neither
touches storage yet: ``apply()`` reports nothing processed and the result is
not reversible.
"""

from __future__ import annotations

from typing import Any, ClassVar, Sequence

from sqlalchemy.orm import Session

from coop_ingestion.domain.ledger import EmptyLedger, ProcessResult, RollbackLedger
from coop_ingestion.domain.types import ImportType
from coop_ingestion.importers.base import ApplyContext
from coop_ingestion.mapping import FieldMapper


class NoOpImporter:
    import_type: ClassVar[ImportType]
    can_rollback: ClassVar[bool] = False

    def apply(
        self,
        rows: Sequence[Sequence[Any]],
        mapper: FieldMapper,
        db: Session,
        context: ApplyContext,
    ) -> ProcessResult:
        return ProcessResult(ledger=EmptyLedger(), can_rollback=False)

    def rollback(self, ledger: RollbackLedger, db: Session) -> int:
        return 0


class GuaranteesImporter(NoOpImporter):
    import_type = ImportType.GUARANTEES


class PaymentsImporter(NoOpImporter):
    import_type = ImportType.PAYMENTS
