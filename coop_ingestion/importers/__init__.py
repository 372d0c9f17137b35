"""
Importer strategies keyed by ImportType.

``default_importer_registry()`` returns a fresh registry holding one
importer per import type.
"""

from coop_ingestion.importers.base import (
    ApplyContext,
    Importer,
    ImporterRegistry,
    ProgressCallback,
    RowImporter,
    RowOutcome,
    reference_number,
)
from coop_ingestion.importers.contributions import ContributionsImporter
from coop_ingestion.importers.loans import LoansImporter
from coop_ingestion.importers.stubs import GuaranteesImporter, NoOpImporter, PaymentsImporter
from coop_ingestion.importers.users import UsersImporter


def default_importer_registry(password_hash_rounds: int = 12) -> ImporterRegistry:
    registry = ImporterRegistry()
    registry.register(UsersImporter(password_hash_rounds=password_hash_rounds))
    registry.register(LoansImporter())
    registry.register(ContributionsImporter())
    registry.register(GuaranteesImporter())
    registry.register(PaymentsImporter())
    return registry


__all__ = [
    "ApplyContext",
    "ContributionsImporter",
    "GuaranteesImporter",
    "Importer",
    "ImporterRegistry",
    "LoansImporter",
    "NoOpImporter",
    "PaymentsImporter",
    "ProgressCallback",
    "RowImporter",
    "RowOutcome",
    "UsersImporter",
    "default_importer_registry",
    "reference_number",
]
