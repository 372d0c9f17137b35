"""ORM models for import sessions, findings, and templates."""

from coop_ingestion.models.session import (
    ImportSessionModel,
    ImportTemplateModel,
    ValidationFindingModel,
)

__all__ = ["ImportSessionModel", "ImportTemplateModel", "ValidationFindingModel"]
