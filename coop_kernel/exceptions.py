"""
Typed Exception Hierarchy for the import pipeline.

Every error has a TYPED exception class (catch by type, not message), a
``code`` class attribute (machine-readable, API-safe), and carries its
context as structured attributes rather than only a message string.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CoopError (base)
    |
    +-- AuthenticationRequiredError
    +-- InvalidRequestError
    |
    +-- ImportPipelineError
    |   +-- ImportSessionNotFoundError
    |   +-- ImportSessionForbiddenError
    |   +-- InvalidStatusTransitionError
    |   +-- MappingRequiredError
    |   +-- MappingColumnError
    |   +-- InvalidCustomRuleError
    |   +-- ValidationBlockingError
    |   +-- ImportTemplateNotFoundError
    |   +-- ImportTemplateMismatchError
    |
    +-- FileFormatError
    |   +-- UnsupportedFileTypeError
    |   +-- FileTooLargeError
    |   +-- UnsupportedMediaTypeError
    |
    +-- BusinessRuleError
    |   +-- BorrowerNotFoundError
    |   +-- ContributorNotFoundError
    |   +-- DuplicateRecordError
    |
    +-- RollbackError
    |   +-- RollbackNotAllowedError
    |   +-- RollbackAlreadyPerformedError
    |   +-- RollbackForbiddenError
    |
    +-- JobError
        +-- JobExecutionError
        +-- JobNotFoundError
        +-- JobIdempotencyError
        +-- TaskNotRegisteredError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Parsing and validation problems go straight back to the caller
   (FileFormatError, ImportPipelineError) for correction.

2. BusinessRuleError is raised inside the per-row apply loop and caught
   there: it counts as a failed row and never aborts the transaction.

3. JobExecutionError wraps anything that escapes the apply transaction;
   the session is marked FAILED and the queue retries the job.

4. RollbackError is synchronous and never changes state.
"""


class CoopError(Exception):
    """
    Base exception for all import pipeline errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COOP_ERROR"


class AuthenticationRequiredError(CoopError):
    """Caller identity is missing or malformed."""

    code: str = "AUTHENTICATION_REQUIRED"

    def __init__(self, reason: str = "Missing caller identity"):
        self.reason = reason
        super().__init__(reason)


class InvalidRequestError(CoopError):
    """A request field could not be interpreted."""

    code: str = "INVALID_REQUEST"

    def __init__(self, field_name: str, reason: str):
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Invalid {field_name}: {reason}")


# Import session / pipeline exceptions


class ImportPipelineError(CoopError):
    """Base exception for import session lifecycle errors."""

    code: str = "IMPORT_ERROR"


class ImportSessionNotFoundError(ImportPipelineError):
    """Import session with given ID was not found."""

    code: str = "IMPORT_SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Import session not found: {session_id}")


class ImportSessionForbiddenError(ImportPipelineError):
    """Caller does not own the import session it tries to change."""

    code: str = "IMPORT_SESSION_FORBIDDEN"

    def __init__(self, session_id: str, actor_id: str, action: str):
        self.session_id = session_id
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"You can only {action} your own imports")


class InvalidStatusTransitionError(ImportPipelineError):
    """Requested operation is not allowed from the session's current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, session_id: str, current_status: str, target_status: str):
        self.session_id = session_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Import session {session_id} cannot move from "
            f"{current_status} to {target_status}"
        )


class MappingRequiredError(ImportPipelineError):
    """A non-empty column mapping is required for this operation."""

    code: str = "MAPPING_REQUIRED"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Import session {session_id} has no column mapping"
        )


class MappingColumnError(ImportPipelineError):
    """A mapping references a column the source file does not have."""

    code: str = "MAPPING_COLUMN_UNKNOWN"

    def __init__(self, column_name: str, available: list[str]):
        self.column_name = column_name
        self.available = available
        super().__init__(
            f"Mapped column '{column_name}' not found in file columns: {available}"
        )


class InvalidCustomRuleError(ImportPipelineError):
    """A ``customRules`` entry cannot be turned into a validation rule."""

    code: str = "INVALID_CUSTOM_RULE"

    def __init__(self, rule_index: int | None, reason: str):
        self.rule_index = rule_index
        self.reason = reason
        where = f"Custom rule #{rule_index}" if rule_index is not None else "Custom rule"
        super().__init__(f"{where} is invalid: {reason}")


class ValidationBlockingError(ImportPipelineError):
    """Import cannot start while ERROR findings remain."""

    code: str = "VALIDATION_ERRORS_REMAIN"

    def __init__(self, session_id: str, error_count: int):
        self.session_id = session_id
        self.error_count = error_count
        super().__init__(
            f"Cannot start import {session_id}: {error_count} validation error(s) remain"
        )


class ImportTemplateNotFoundError(ImportPipelineError):
    """Import template with given ID was not found or is inactive."""

    code: str = "IMPORT_TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Import template not found: {template_id}")


class ImportTemplateMismatchError(ImportPipelineError):
    """Template import type differs from the session import type."""

    code: str = "IMPORT_TEMPLATE_MISMATCH"

    def __init__(self, template_id: str, template_type: str, import_type: str):
        self.template_id = template_id
        self.template_type = template_type
        self.import_type = import_type
        super().__init__(
            f"Template {template_id} is for {template_type}, not {import_type}"
        )


# File format exceptions


class FileFormatError(CoopError):
    """Uploaded file is unreadable, corrupt, or structurally invalid."""

    code: str = "INVALID_FILE_FORMAT"

    def __init__(self, file_name: str, reason: str):
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Invalid file format for {file_name}: {reason}")


class UnsupportedFileTypeError(FileFormatError):
    """Declared file type has no reader."""

    code: str = "UNSUPPORTED_FILE_TYPE"

    def __init__(self, file_type: str):
        self.file_type = file_type
        super().__init__(file_type, f"unsupported file type {file_type!r}")


class FileTooLargeError(FileFormatError):
    """Upload exceeds the configured size limit."""

    code: str = "FILE_TOO_LARGE"

    def __init__(self, file_name: str, file_size: int, max_size: int):
        self.file_size = file_size
        self.max_size = max_size
        super().__init__(
            file_name, f"{file_size} bytes exceeds the {max_size} byte limit"
        )


class UnsupportedMediaTypeError(FileFormatError):
    """Upload MIME type is not on the allow-list."""

    code: str = "UNSUPPORTED_MEDIA_TYPE"

    def __init__(self, file_name: str, mime_type: str, allowed: tuple[str, ...]):
        self.mime_type = mime_type
        self.allowed = allowed
        super().__init__(
            file_name, f"MIME type {mime_type!r} not in {list(allowed)}"
        )


# Business rule exceptions (raised and caught per row during apply)


class BusinessRuleError(CoopError):
    """A row violates a business rule; the row fails, the batch continues."""

    code: str = "BUSINESS_RULE_VIOLATION"


class BorrowerNotFoundError(BusinessRuleError):
    """LOANS row references a borrower email with no user."""

    code: str = "BORROWER_NOT_FOUND"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Borrower not found with email: {email}")


class ContributorNotFoundError(BusinessRuleError):
    """CONTRIBUTIONS row references a contributor email with no user."""

    code: str = "CONTRIBUTOR_NOT_FOUND"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Contributor not found with email: {email}")


class DuplicateRecordError(BusinessRuleError):
    """Natural key already exists and the duplicate policy is 'error'."""

    code: str = "DUPLICATE_RECORD"

    def __init__(self, entity_type: str, natural_key: str):
        self.entity_type = entity_type
        self.natural_key = natural_key
        super().__init__(f"{entity_type} already exists: {natural_key}")


# Rollback exceptions


class RollbackError(CoopError):
    """Base exception for rollback requests that cannot be honoured."""

    code: str = "ROLLBACK_ERROR"


class RollbackNotAllowedError(RollbackError):
    """Session is not eligible for rollback."""

    code: str = "ROLLBACK_NOT_ALLOWED"

    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Rollback not allowed for {session_id}: {reason}")


class RollbackAlreadyPerformedError(RollbackError):
    """Rollback was already performed or requested."""

    code: str = "ROLLBACK_ALREADY_PERFORMED"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Import {session_id} has already been rolled back")


class RollbackForbiddenError(RollbackError):
    """Only the session owner may roll it back."""

    code: str = "ROLLBACK_FORBIDDEN"

    def __init__(self, session_id: str, actor_id: str):
        self.session_id = session_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} is not allowed to roll back import {session_id}"
        )


# Job queue exceptions


class JobError(CoopError):
    """Base exception for job queue errors."""

    code: str = "JOB_ERROR"


class JobExecutionError(JobError):
    """An exception escaped a job's transaction."""

    code: str = "JOB_EXECUTION_FAILED"

    def __init__(self, job_id: str, task_type: str, message: str, stack: str | None = None):
        self.job_id = job_id
        self.task_type = task_type
        self.message = message
        self.stack = stack
        super().__init__(f"Job {job_id} ({task_type}) failed: {message}")


class JobNotFoundError(JobError):
    """Job with given ID was not found."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobIdempotencyError(JobError):
    """A job with the same idempotency key already exists."""

    code: str = "JOB_IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_job_id: str):
        self.idempotency_key = idempotency_key
        self.existing_job_id = existing_job_id
        super().__init__(
            f"Job with idempotency key {idempotency_key} already exists: {existing_job_id}"
        )


class TaskNotRegisteredError(JobError):
    """No task registered for the requested task type."""

    code: str = "TASK_NOT_REGISTERED"

    def __init__(self, task_type: str, available: tuple[str, ...]):
        self.task_type = task_type
        self.available = available
        super().__init__(
            f"No task registered for '{task_type}'. Available: {list(available)}"
        )
