"""
Import session routes.

Preview and validation failures caused by an unreadable file are recorded
on the session (status FAILED) in a second unit of work, because the
request's own unit of work rolls back when the error propagates.
"""

from __future__ import annotations

import json
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from coop_batch.orchestrator import JobOrchestrator
from coop_kernel.exceptions import FileFormatError, InvalidRequestError
from coop_kernel.logging_config import get_logger

from coop_api.dependencies import get_caller_id, get_orchestrator, import_service_scope
from coop_api.schemas import UpdateMappingRequest
from coop_ingestion.domain.types import FileType, ImportStatus, ImportType
from coop_ingestion.services.import_service import UploadedFile

router = APIRouter(prefix="/import", tags=["import"])

logger = get_logger("api.imports")


def _parse_metadata(raw: str | None) -> dict[str, Any] | None:
    if raw is None or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidRequestError("metadata", exc.msg) from None
    if not isinstance(parsed, dict):
        raise InvalidRequestError("metadata", "expected a JSON object")
    return parsed


def _record_failure(orchestrator: JobOrchestrator, session_id: UUID, exc: FileFormatError) -> None:
    with import_service_scope(orchestrator) as service:
        service.mark_failed(session_id, exc)


@router.post("/sessions", status_code=201)
def create_session(
    file: UploadFile = File(...),
    import_type: ImportType = Form(..., alias="importType"),
    file_type: FileType | None = Form(None, alias="fileType"),
    has_headers: bool = Form(True, alias="hasHeaders"),
    delimiter: str | None = Form(None),
    encoding: str | None = Form(None),
    template_id: UUID | None = Form(None, alias="templateId"),
    metadata: str | None = Form(None),
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    # One byte past the limit is enough for the size check to fire.
    max_size = orchestrator.config.upload.max_file_size
    upload = UploadedFile(
        original_name=file.filename or "upload",
        content=file.file.read(max_size + 1),
        mime_type=file.content_type,
    )
    with import_service_scope(orchestrator) as service:
        session = service.create_session(
            caller_id,
            upload,
            import_type,
            file_type=file_type,
            has_headers=has_headers,
            delimiter=delimiter,
            encoding=encoding,
            template_id=template_id,
            metadata=_parse_metadata(metadata),
        )
    return session.to_json()


@router.get("/sessions")
def list_sessions(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    status: ImportStatus | None = Query(None),
    import_type: ImportType | None = Query(None, alias="importType"),
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with import_service_scope(orchestrator) as service:
        result = service.list_sessions(
            caller_id, status=status, import_type=import_type, page=page, limit=limit,
        )
    return result.to_json()


@router.get("/sessions/{session_id}")
def get_session(
    session_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with import_service_scope(orchestrator) as service:
        return service.get_session(session_id).to_json()


@router.post("/sessions/{session_id}/preview")
def preview_session(
    session_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    try:
        with import_service_scope(orchestrator) as service:
            preview = service.preview(session_id)
    except FileFormatError as exc:
        _record_failure(orchestrator, session_id, exc)
        raise
    return preview.to_json()


@router.put("/sessions/{session_id}/mapping")
def update_mapping(
    session_id: UUID,
    body: UpdateMappingRequest,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with import_service_scope(orchestrator) as service:
        session = service.update_mapping(
            session_id,
            [m.to_domain() for m in body.mapping],
            body.validation_rules.to_domain() if body.validation_rules else None,
        )
    return session.to_json()


@router.post("/sessions/{session_id}/validate")
def validate_session(
    session_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    try:
        with import_service_scope(orchestrator) as service:
            result = service.validate(session_id)
    except FileFormatError as exc:
        _record_failure(orchestrator, session_id, exc)
        raise
    return [finding.to_json() for finding in result.findings]


@router.post("/sessions/{session_id}/start", status_code=202)
def start_import(
    session_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with import_service_scope(orchestrator) as service:
        return service.start_import(session_id, caller_id)


@router.get("/sessions/{session_id}/report")
def get_report(
    session_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with import_service_scope(orchestrator) as service:
        return service.get_report(session_id)


@router.post("/sessions/{session_id}/rollback", status_code=202)
def rollback_import(
    session_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with import_service_scope(orchestrator) as service:
        queued = service.request_rollback(session_id, caller_id)
    return {**queued, "message": "Import rollback scheduled"}


@router.put("/sessions/{session_id}/cancel")
def cancel_import(
    session_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with import_service_scope(orchestrator) as service:
        session = service.cancel(session_id, caller_id)
    return {"message": "Import cancelled successfully", "session": session.to_json()}


@router.delete("/sessions/{session_id}")
def delete_session(
    session_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with import_service_scope(orchestrator) as service:
        service.delete_session(session_id, caller_id)
    return {"message": "Import session deleted successfully"}


@router.get("/status/{session_id}")
def get_status(
    session_id: UUID,
    caller_id: UUID = Depends(get_caller_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    with import_service_scope(orchestrator) as service:
        return service.get_status(session_id)
