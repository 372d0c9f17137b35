"""
ImportService -- orchestrates one import session from upload to rollback.

Contract:
    Every public method loads the session row, checks the lifecycle guard
    (domain/lifecycle.py), performs its step and returns a frozen DTO or a
    plain JSON-ready dict.  Upload, preview, mapping and validation run
    inline; apply and rollback are handed to the job queue and executed
    later through ``apply_import`` / ``apply_rollback``.

Architecture: coop_ingestion/services.  Composes the reader, mapper,
    validation engine and importer registry.  The queue is any object with
    an ``enqueue()`` method (see ``JobSubmitter``); coop_batch provides one.

Invariants enforced:
    - column_mapping is non-empty before VALIDATING.
    - IMPORTING is entered only from VALIDATING with zero ERROR findings.
    - rolled_back_at is written once and never cleared.
    - Findings are replaced wholesale on every validation run.

Non-goals:
    - Does NOT call ``session.commit()``; callers own the transaction.
"""

from __future__ import annotations

import time
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from coop_config.schema import AppConfig
from coop_kernel.domain.clock import Clock, SystemClock, ensure_utc
from coop_kernel.exceptions import (
    FileFormatError,
    FileTooLargeError,
    ImportSessionForbiddenError,
    ImportSessionNotFoundError,
    ImportTemplateMismatchError,
    InvalidStatusTransitionError,
    JobIdempotencyError,
    MappingColumnError,
    MappingRequiredError,
    RollbackAlreadyPerformedError,
    RollbackForbiddenError,
    RollbackNotAllowedError,
    UnsupportedFileTypeError,
    UnsupportedMediaTypeError,
    ValidationBlockingError,
)
from coop_kernel.logging_config import LogContext, get_logger

from coop_ingestion.adapters import FilePreview, ReadOptions, TabularFileReader
from coop_ingestion.domain.ledger import ProcessResult, ledger_from_json
from coop_ingestion.domain.lifecycle import (
    CANCELLABLE_STATUSES,
    PREVIEWABLE_STATUSES,
    assert_transition,
    validate_transition,
)
from coop_ingestion.domain.progress import estimate_completion, progress_percentage
from coop_ingestion.domain.types import (
    FieldMapping,
    FileType,
    ImportSession,
    ImportStatus,
    ImportType,
    Severity,
    ValidationOptions,
    mappings_from_json,
    mappings_to_json,
)
from coop_ingestion.domain.validators import ValidationEngine, ValidationResult, rules_for
from coop_ingestion.importers import (
    ApplyContext,
    ImporterRegistry,
    ProgressCallback,
    default_importer_registry,
    reference_number,
)
from coop_ingestion.mapping import FieldMapper, resolve_column_indexes
from coop_ingestion.models.session import ImportSessionModel, ValidationFindingModel
from coop_ingestion.services.template_service import TemplateService

logger = get_logger("ingestion.import_service")

APPLY_IMPORT_TASK = "import.apply"
ROLLBACK_IMPORT_TASK = "import.rollback"

_EXTENSION_FILE_TYPES: dict[str, FileType] = {
    ".csv": FileType.CSV,
    ".txt": FileType.CSV,
    ".xlsx": FileType.EXCEL,
    ".xlsm": FileType.EXCEL,
}


def idempotency_key(task_type: str, session_id: UUID) -> str:
    return f"{task_type}:{session_id}"


class JobSubmitter(Protocol):
    """What ImportService needs from a job queue."""

    def enqueue(
        self,
        task_type: str,
        parameters: dict[str, Any],
        idempotency_key: str,
        actor_id: UUID,
    ) -> Any:
        """Persist a job and return it (anything with a ``job_id``)."""
        ...


@dataclass(frozen=True)
class UploadedFile:
    """Raw upload as received by the transport layer."""

    original_name: str
    content: bytes
    mime_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class SessionPage:
    sessions: tuple[ImportSession, ...]
    total: int
    page: int
    limit: int

    def to_json(self) -> dict[str, Any]:
        return {
            "sessions": [s.to_json() for s in self.sessions],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
        }


def infer_file_type(original_name: str) -> FileType:
    suffix = Path(original_name).suffix.lower()
    try:
        return _EXTENSION_FILE_TYPES[suffix]
    except KeyError:
        raise UnsupportedFileTypeError(suffix or original_name) from None


class ImportService:
    """Session lifecycle operations over one SQLAlchemy Session."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: AppConfig | None = None,
        queue: JobSubmitter | None = None,
        reader: TabularFileReader | None = None,
        engine: ValidationEngine | None = None,
        importers: ImporterRegistry | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or AppConfig()
        self._queue = queue
        self._reader = reader or TabularFileReader()
        self._engine = engine or ValidationEngine()
        self._importers = importers or default_importer_registry(
            password_hash_rounds=self._settings.imports.password_hash_rounds,
        )

    # -------------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------------

    def create_session(
        self,
        actor_id: UUID,
        upload: UploadedFile,
        import_type: ImportType,
        file_type: FileType | None = None,
        has_headers: bool = True,
        delimiter: str | None = None,
        encoding: str | None = None,
        template_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ImportSession:
        """Store the upload, check it is a readable table, create a PENDING session.

        Raises:
            FileTooLargeError: Upload exceeds ``upload.max_file_size``.
            UnsupportedMediaTypeError: MIME type not in the allow-list.
            UnsupportedFileTypeError: Extension maps to no known file type.
            FileFormatError: The stored file is empty or corrupt.
            MappingColumnError: A template column is missing from the file.
        """
        limits = self._settings.upload
        if upload.size > limits.max_file_size:
            raise FileTooLargeError(upload.original_name, upload.size, limits.max_file_size)
        if upload.mime_type and upload.mime_type not in limits.allowed_mime_types:
            raise UnsupportedMediaTypeError(
                upload.original_name, upload.mime_type, limits.allowed_mime_types,
            )

        resolved_type = file_type or infer_file_type(upload.original_name)

        template_mapping: tuple[FieldMapping, ...] = ()
        validation_rules: dict[str, Any] | None = None
        if template_id is not None:
            template = TemplateService(self._session, self._clock).get_template(template_id)
            if template.import_type != import_type:
                raise ImportTemplateMismatchError(
                    str(template_id), template.import_type.value, import_type.value,
                )
            template_mapping = template.column_mapping
            validation_rules = template.validation_rules.to_json()

        session_number = reference_number("IMP", self._clock, length=9)
        upload_dir = Path(limits.upload_dir)
        upload_dir.mkdir(parents=True, exist_ok=True)
        stored_name = f"{session_number}{Path(upload.original_name).suffix.lower()}"
        file_path = upload_dir / stored_name
        file_path.write_bytes(upload.content)

        column_mapping: list[dict[str, Any]] | None = None
        try:
            self._reader.validate_structure(file_path, resolved_type)
            if template_mapping:
                # Template columns are pinned to this file's header positions
                parsed = self._reader.read(
                    file_path,
                    resolved_type,
                    ReadOptions(
                        has_headers=has_headers,
                        delimiter=delimiter or ",",
                        encoding=encoding or "utf8",
                        sample_size=0,
                    ),
                )
                column_mapping = mappings_to_json(
                    resolve_column_indexes(template_mapping, parsed.columns)
                )
        except (FileFormatError, MappingColumnError):
            file_path.unlink(missing_ok=True)
            raise

        now = self._clock.now()
        model = ImportSessionModel(
            session_number=session_number,
            file_name=stored_name,
            original_name=upload.original_name,
            file_size=upload.size,
            file_type=resolved_type.value,
            file_path=str(file_path),
            has_headers=has_headers,
            delimiter=delimiter or ",",
            encoding=encoding or "utf8",
            import_type=import_type.value,
            status=ImportStatus.PENDING.value,
            column_mapping=column_mapping,
            validation_rules=validation_rules,
            template_id=template_id,
            session_metadata=metadata,
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        self._session.flush()

        with LogContext.bind(session_id=model.id, actor_id=actor_id, import_type=import_type.value):
            logger.info(
                "import_session_created",
                extra={
                    "session_number": session_number,
                    "file_type": resolved_type.value,
                    "file_size": upload.size,
                    "template_id": str(template_id) if template_id else None,
                },
            )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_sessions(
        self,
        actor_id: UUID,
        status: ImportStatus | None = None,
        import_type: ImportType | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> SessionPage:
        """The caller's sessions, newest first."""
        settings = self._settings.imports
        page = max(page, 1)
        limit = min(max(limit or settings.default_page_size, 1), settings.max_page_size)

        conditions = [ImportSessionModel.created_by_id == actor_id]
        if status is not None:
            conditions.append(ImportSessionModel.status == status.value)
        if import_type is not None:
            conditions.append(ImportSessionModel.import_type == import_type.value)

        total = self._session.execute(
            select(func.count()).select_from(ImportSessionModel).where(*conditions)
        ).scalar_one()
        models = self._session.execute(
            select(ImportSessionModel)
            .where(*conditions)
            .order_by(ImportSessionModel.created_at.desc(), ImportSessionModel.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return SessionPage(
            sessions=tuple(m.to_dto() for m in models),
            total=total,
            page=page,
            limit=limit,
        )

    def get_session(self, session_id: UUID) -> ImportSession:
        return self._load(session_id).to_dto()

    # -------------------------------------------------------------------------
    # Preview / mapping / validation
    # -------------------------------------------------------------------------

    def preview(self, session_id: UUID) -> FilePreview:
        """Parse a sample of the file and suggest a mapping.

        A PENDING session moves to PARSING; later editing states keep
        their status.  Parse failures propagate as FileFormatError; the
        caller records them with ``mark_failed``.
        """
        model = self._load(session_id)
        current = ImportStatus(model.status)
        if current not in PREVIEWABLE_STATUSES:
            raise InvalidStatusTransitionError(
                str(session_id), current.value, ImportStatus.PARSING.value,
            )

        with LogContext.bind(session_id=session_id, import_type=model.import_type):
            preview = self._reader.preview(
                Path(model.file_path),
                model.file_type,
                self._read_options(model),
                sample_size=self._settings.preview.sample_size,
            )

            if current == ImportStatus.PENDING:
                self._transition(model, ImportStatus.PARSING)
            model.total_rows = preview.total_rows
            self._session.flush()

            logger.info(
                "import_preview_generated",
                extra={"total_rows": preview.total_rows, "columns": len(preview.columns)},
            )
        return preview

    def update_mapping(
        self,
        session_id: UUID,
        mappings: Sequence[FieldMapping],
        validation_rules: ValidationOptions | None = None,
    ) -> ImportSession:
        """Replace the column mapping (and rules) and move to MAPPED.

        Column names are pinned to their index in the file's current column
        list; stale findings from an earlier validation are discarded.

        Raises:
            InvalidCustomRuleError: A custom rule in ``validation_rules`` is malformed.
        """
        model = self._load(session_id)
        if not mappings:
            raise MappingRequiredError(str(session_id))
        assert_transition(session_id, ImportStatus(model.status), ImportStatus.MAPPED)
        if validation_rules is not None:
            rules_for(ImportType(model.import_type), validation_rules)

        parsed = self._reader.read(
            Path(model.file_path),
            model.file_type,
            self._read_options(model, sample_size=0),
        )
        resolved = resolve_column_indexes(mappings, parsed.columns)

        model.column_mapping = mappings_to_json(resolved)
        if validation_rules is not None:
            model.validation_rules = validation_rules.to_json()
        model.total_rows = parsed.total_rows
        self._session.execute(
            delete(ValidationFindingModel).where(ValidationFindingModel.session_id == model.id)
        )
        self._transition(model, ImportStatus.MAPPED)
        self._session.flush()

        with LogContext.bind(session_id=session_id, import_type=model.import_type):
            logger.info("import_mapping_updated", extra={"mapped_fields": len(resolved)})
        return model.to_dto()

    def validate(self, session_id: UUID) -> ValidationResult:
        """Run the ValidationEngine over every row and persist the findings.

        The session ends in VALIDATING whatever the outcome; ERROR findings
        block ``start_import`` until the mapping or file is corrected.
        """
        model = self._load(session_id)
        mappings = mappings_from_json(model.column_mapping)
        if not mappings:
            raise MappingRequiredError(str(session_id))
        assert_transition(session_id, ImportStatus(model.status), ImportStatus.VALIDATING)

        import_type = ImportType(model.import_type)
        options = ValidationOptions.from_json(model.validation_rules)

        with LogContext.bind(session_id=session_id, import_type=import_type.value):
            parsed = self._reader.read(Path(model.file_path), model.file_type, self._read_options(model))
            records = FieldMapper(mappings).map_rows(parsed.rows)
            result = self._engine.validate(records, import_type, options, mappings)

            self._session.execute(
                delete(ValidationFindingModel).where(ValidationFindingModel.session_id == model.id)
            )
            actor_id = model.created_by_id
            for finding in result.findings:
                self._session.add(ValidationFindingModel.from_dto(finding, model.id, actor_id))

            model.total_rows = parsed.total_rows
            model.error_report = {
                "totalErrors": len(result.errors),
                "totalWarnings": len(result.warnings),
                "totalInfos": len(result.infos),
                "autoFixedCount": result.auto_fixed_count,
                "isValid": result.is_valid,
            }
            self._transition(model, ImportStatus.VALIDATING)
            self._session.flush()

            logger.info(
                "import_validated",
                extra={
                    "total_rows": parsed.total_rows,
                    "errors": len(result.errors),
                    "warnings": len(result.warnings),
                    "is_valid": result.is_valid,
                },
            )
        return result

    # -------------------------------------------------------------------------
    # Start / cancel / delete
    # -------------------------------------------------------------------------

    def start_import(self, session_id: UUID, actor_id: UUID) -> dict[str, str]:
        """Move a validated session to IMPORTING and enqueue its apply job.

        Raises:
            InvalidStatusTransitionError: Session is not VALIDATING.
            ValidationBlockingError: ERROR findings remain.
        """
        model = self._load(session_id)
        current = ImportStatus(model.status)
        if current != ImportStatus.VALIDATING:
            raise InvalidStatusTransitionError(
                str(session_id), current.value, ImportStatus.IMPORTING.value,
            )

        error_count = self._session.execute(
            select(func.count())
            .select_from(ValidationFindingModel)
            .where(
                ValidationFindingModel.session_id == model.id,
                ValidationFindingModel.severity == Severity.ERROR.value,
            )
        ).scalar_one()
        if error_count > 0:
            raise ValidationBlockingError(str(session_id), error_count)

        self._transition(model, ImportStatus.IMPORTING)
        model.started_at = self._clock.now()
        model.processed_rows = 0
        model.success_rows = 0
        model.failed_rows = 0
        model.skipped_rows = 0
        self._session.flush()

        job = self._require_queue().enqueue(
            APPLY_IMPORT_TASK,
            {"session_id": str(session_id), "actor_id": str(actor_id)},
            idempotency_key(APPLY_IMPORT_TASK, session_id),
            actor_id,
        )

        with LogContext.bind(session_id=session_id, actor_id=actor_id, job_id=job.job_id):
            logger.info("import_started", extra={"import_type": model.import_type})
        return {"jobId": str(job.job_id)}

    def cancel(self, session_id: UUID, actor_id: UUID) -> ImportSession:
        model = self._load(session_id)
        if model.created_by_id != actor_id:
            raise ImportSessionForbiddenError(str(session_id), str(actor_id), "cancel")
        current = ImportStatus(model.status)
        if current not in CANCELLABLE_STATUSES:
            raise InvalidStatusTransitionError(
                str(session_id), current.value, ImportStatus.CANCELLED.value,
            )

        self._transition(model, ImportStatus.CANCELLED)
        model.completed_at = self._clock.now()
        self._session.flush()

        with LogContext.bind(session_id=session_id, actor_id=actor_id):
            logger.info("import_cancelled", extra={"previous_status": current.value})
        return model.to_dto()

    def delete_session(self, session_id: UUID, actor_id: UUID) -> None:
        """Delete the session, its findings and its stored file."""
        model = self._load(session_id)
        if model.created_by_id != actor_id:
            raise ImportSessionForbiddenError(str(session_id), str(actor_id), "delete")
        if model.status == ImportStatus.IMPORTING.value:
            raise InvalidStatusTransitionError(
                str(session_id), model.status, "DELETED",
            )

        file_path = Path(model.file_path)
        try:
            file_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(
                "import_file_delete_failed",
                extra={"file_path": str(file_path), "error": str(exc)},
            )

        self._session.delete(model)
        self._session.flush()

        with LogContext.bind(session_id=session_id, actor_id=actor_id):
            logger.info("import_session_deleted")

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_report(self, session_id: UUID) -> dict[str, Any]:
        """Counts, every persisted finding in row order, and apply reports."""
        model = self._load(session_id)
        findings = [
            f.to_dto()
            for f in self._session.execute(
                select(ValidationFindingModel)
                .where(ValidationFindingModel.session_id == model.id)
                .order_by(
                    ValidationFindingModel.row_number,
                    ValidationFindingModel.severity,
                    ValidationFindingModel.field_name,
                    ValidationFindingModel.error_code,
                )
            ).scalars().all()
        ]
        return {
            "sessionId": str(model.id),
            "status": model.status,
            "totalRows": model.total_rows,
            "processedRows": model.processed_rows,
            "successRows": model.success_rows,
            "failedRows": model.failed_rows,
            "skippedRows": model.skipped_rows,
            "processingTime": model.processing_time or 0,
            "canRollback": model.can_rollback,
            "rolledBackAt": ensure_utc(model.rolled_back_at).isoformat() if model.rolled_back_at else None,
            "validations": [f.to_json() for f in findings],
            "summary": {
                "errors": sum(1 for f in findings if f.severity == Severity.ERROR),
                "warnings": sum(1 for f in findings if f.severity == Severity.WARNING),
                "infos": sum(1 for f in findings if f.severity == Severity.INFO),
                "autoFixed": sum(1 for f in findings if f.was_auto_fixed),
            },
            "errorReport": model.error_report,
            "successReport": model.success_report,
        }

    def get_status(self, session_id: UUID) -> dict[str, Any]:
        model = self._load(session_id)
        status = ImportStatus(model.status)
        estimated = None
        if status == ImportStatus.IMPORTING:
            estimated = estimate_completion(
                model.started_at, self._clock.now(), model.processed_rows, model.total_rows,
            )
        return {
            "sessionId": str(model.id),
            "status": status.value,
            "progress": {
                "totalRows": model.total_rows,
                "processedRows": model.processed_rows,
                "successRows": model.success_rows,
                "failedRows": model.failed_rows,
                "percentage": progress_percentage(model.processed_rows, model.total_rows, status),
            },
            "startedAt": ensure_utc(model.started_at).isoformat() if model.started_at else None,
            "estimatedCompletion": estimated.isoformat() if estimated else None,
        }

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    def request_rollback(self, session_id: UUID, actor_id: UUID) -> dict[str, str]:
        """Check eligibility synchronously, then enqueue the rollback job.

        Raises:
            RollbackForbiddenError: Caller does not own the session.
            RollbackNotAllowedError: Not COMPLETED, not reversible, or no ledger.
            RollbackAlreadyPerformedError: Already rolled back or requested.
        """
        model = self._load(session_id)
        self._check_rollback_eligible(model, actor_id)

        try:
            job = self._require_queue().enqueue(
                ROLLBACK_IMPORT_TASK,
                {"session_id": str(session_id), "actor_id": str(actor_id)},
                idempotency_key(ROLLBACK_IMPORT_TASK, session_id),
                actor_id,
            )
        except JobIdempotencyError:
            raise RollbackAlreadyPerformedError(str(session_id)) from None

        with LogContext.bind(session_id=session_id, actor_id=actor_id, job_id=job.job_id):
            logger.info("import_rollback_requested")
        return {"jobId": str(job.job_id)}

    def apply_rollback(self, session_id: UUID, actor_id: UUID) -> int:
        """Delete the ledger's created records; returns the number deleted.

        Runs inside the rollback job.  A session that was already rolled
        back is left untouched.
        """
        model = self._load(session_id)
        with LogContext.bind(session_id=session_id, actor_id=actor_id, import_type=model.import_type):
            if model.rolled_back_at is not None:
                logger.info("import_rollback_skipped", extra={"reason": "already_rolled_back"})
                return 0
            self._check_rollback_eligible(model, actor_id)

            import_type = ImportType(model.import_type)
            ledger = ledger_from_json(import_type, model.rollback_data)
            deleted = self._importers.get(import_type).rollback(ledger, self._session)

            model.rolled_back_at = self._clock.now()
            model.rolled_back_by = actor_id
            self._session.flush()

            logger.info(
                "import_rolled_back",
                extra={"deleted": deleted, "ledger_size": len(ledger.created_ids)},
            )
        return deleted

    def _check_rollback_eligible(self, model: ImportSessionModel, actor_id: UUID) -> None:
        session_id = str(model.id)
        if model.created_by_id != actor_id:
            raise RollbackForbiddenError(session_id, str(actor_id))
        if model.status != ImportStatus.COMPLETED.value:
            raise RollbackNotAllowedError(session_id, f"import is {model.status}")
        if not model.can_rollback or not model.rollback_data:
            raise RollbackNotAllowedError(session_id, "this import cannot be rolled back")
        if model.rolled_back_at is not None:
            raise RollbackAlreadyPerformedError(session_id)

    # -------------------------------------------------------------------------
    # Apply (job side)
    # -------------------------------------------------------------------------

    def apply_import(
        self,
        session_id: UUID,
        actor_id: UUID,
        on_progress: ProgressCallback | None = None,
    ) -> ProcessResult | None:
        """Run the session's importer over every row and finalize the session.

        Returns None without touching anything when the session was
        cancelled or already completed.  A retried run re-enters IMPORTING
        from FAILED.  Exceptions escaping the importer abort the caller's
        transaction; the caller then records them with ``mark_failed``.

        ``on_progress(processed, total)`` is called every
        ``queue.heartbeat_every_rows`` rows while the importer runs.
        """
        model = self._load(session_id)
        current = ImportStatus(model.status)
        import_type = ImportType(model.import_type)

        with LogContext.bind(session_id=session_id, actor_id=actor_id, import_type=import_type.value):
            if current in (ImportStatus.CANCELLED, ImportStatus.COMPLETED):
                logger.info("import_apply_skipped", extra={"status": current.value})
                return None
            if current == ImportStatus.FAILED:
                self._transition(model, ImportStatus.IMPORTING)
            elif current != ImportStatus.IMPORTING:
                raise InvalidStatusTransitionError(
                    str(session_id), current.value, ImportStatus.IMPORTING.value,
                )

            mappings = mappings_from_json(model.column_mapping)
            if not mappings:
                raise MappingRequiredError(str(session_id))

            start = time.monotonic()
            parsed = self._reader.read(Path(model.file_path), model.file_type, self._read_options(model))
            importer = self._importers.get(import_type)
            context = ApplyContext(
                session_id=session_id,
                actor_id=actor_id,
                clock=self._clock,
                options=ValidationOptions.from_json(model.validation_rules),
                on_progress=on_progress,
                progress_every=self._settings.queue.heartbeat_every_rows,
            )
            result = importer.apply(parsed.rows, FieldMapper(mappings), self._session, context)
            self.finalize_import(session_id, result, int((time.monotonic() - start) * 1000))
        return result

    def finalize_import(
        self,
        session_id: UUID,
        result: ProcessResult,
        processing_time_ms: int,
    ) -> ImportSession:
        model = self._load(session_id)
        self._transition(model, ImportStatus.COMPLETED)
        model.processed_rows = result.processed
        model.success_rows = result.success
        model.failed_rows = result.failed
        model.skipped_rows = result.skipped
        model.completed_at = self._clock.now()
        model.processing_time = processing_time_ms
        model.can_rollback = result.can_rollback
        model.rollback_data = result.ledger.to_json() or None
        model.success_report = result.success_report()
        model.error_report = result.error_report()
        self._session.flush()

        logger.info(
            "import_completed",
            extra={
                "processed": result.processed,
                "success": result.success,
                "failed": result.failed,
                "skipped": result.skipped,
                "duration_ms": processing_time_ms,
            },
        )
        return model.to_dto()

    def mark_failed(
        self,
        session_id: UUID,
        error: BaseException | str,
        stack: str | None = None,
    ) -> ImportSession:
        """Record an unrecoverable error on the session and move it to FAILED.

        Sessions already in COMPLETED or CANCELLED keep their status; the
        error is logged only.
        """
        model = self._load(session_id)
        current = ImportStatus(model.status)
        message = str(error)
        if stack is None and isinstance(error, BaseException) and error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        with LogContext.bind(session_id=session_id, import_type=model.import_type):
            if current != ImportStatus.FAILED and not validate_transition(current, ImportStatus.FAILED):
                logger.warning(
                    "import_failure_not_recorded",
                    extra={"status": current.value, "error": message},
                )
                return model.to_dto()

            if current != ImportStatus.FAILED:
                self._transition(model, ImportStatus.FAILED)
            now = self._clock.now()
            model.completed_at = now
            if model.started_at is not None:
                elapsed = ensure_utc(now) - ensure_utc(model.started_at)
                model.processing_time = int(elapsed.total_seconds() * 1000)

            report = dict(model.error_report or {})
            report["error"] = message
            report["stack"] = stack
            report["failedAt"] = ensure_utc(now).isoformat()
            model.error_report = report
            self._session.flush()

            logger.error(
                "import_failed",
                extra={"previous_status": current.value, "error": message},
            )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _load(self, session_id: UUID) -> ImportSessionModel:
        model = self._session.get(ImportSessionModel, session_id)
        if model is None:
            raise ImportSessionNotFoundError(str(session_id))
        return model

    def _transition(self, model: ImportSessionModel, target: ImportStatus) -> None:
        assert_transition(model.id, ImportStatus(model.status), target)
        model.status = target.value
        model.updated_at = self._clock.now()

    def _read_options(self, model: ImportSessionModel, sample_size: int | None = None) -> ReadOptions:
        return ReadOptions(
            has_headers=model.has_headers,
            delimiter=model.delimiter or ",",
            encoding=model.encoding,
            sample_size=sample_size,
        )

    def _require_queue(self) -> JobSubmitter:
        if self._queue is None:
            raise RuntimeError("ImportService was created without a job queue")
        return self._queue
