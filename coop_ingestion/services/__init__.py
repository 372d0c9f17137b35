"""Import pipeline services (session lifecycle, templates)."""

from coop_ingestion.services.import_service import (
    ImportService,
    SessionPage,
    UploadedFile,
    idempotency_key,
    infer_file_type,
)
from coop_ingestion.services.template_service import TemplateService

__all__ = [
    "ImportService",
    "SessionPage",
    "TemplateService",
    "UploadedFile",
    "idempotency_key",
    "infer_file_type",
]
