"""Import template routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from coop_batch.orchestrator import JobOrchestrator

from coop_api.dependencies import get_caller_id, get_orchestrator, template_service_scope
from coop_api.schemas import CreateTemplateRequest
from coop_ingestion.domain.types import ImportType

router = APIRouter(prefix="/import/templates", tags=["import-templates"])


@router.get("")
def list_templates(
    import_type: ImportType | None = Query(None, alias="importType"),
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with template_service_scope(orchestrator) as service:
        templates = service.list_templates(import_type)
    return {"templates": [t.to_json() for t in templates]}


@router.post("", status_code=201)
def create_template(
    body: CreateTemplateRequest,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with template_service_scope(orchestrator) as service:
        template = service.create_template(
            caller_id,
            body.name,
            body.import_type,
            column_mapping=[m.to_domain() for m in body.column_mapping],
            validation_rules=body.validation_rules.to_domain() if body.validation_rules else None,
            transform_rules=body.transform_rules,
            description=body.description,
            is_default=body.is_default,
        )
    return template.to_json()
