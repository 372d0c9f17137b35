"""
HTTP error mapping for the import API.

Every CoopError is rendered as::

    {"error": {"code": "...", "message": "...", "details": {...}}}

``details`` carries the exception's structured attributes (session_id,
current_status, ...).  The status code is chosen by the first matching
class in ``_STATUS_BY_EXCEPTION``; order matters because subclasses
precede their families.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from coop_kernel.exceptions import (
    AuthenticationRequiredError,
    BusinessRuleError,
    CoopError,
    FileFormatError,
    FileTooLargeError,
    ImportPipelineError,
    ImportSessionForbiddenError,
    ImportSessionNotFoundError,
    ImportTemplateNotFoundError,
    InvalidRequestError,
    JobIdempotencyError,
    JobNotFoundError,
    RollbackError,
    RollbackForbiddenError,
    UnsupportedMediaTypeError,
)
from coop_kernel.logging_config import get_logger

logger = get_logger("api.errors")

ERROR_CODE_VALIDATION = "REQUEST_VALIDATION_ERROR"
ERROR_CODE_INTERNAL = "INTERNAL_SERVER_ERROR"

_STATUS_BY_EXCEPTION: tuple[tuple[type[CoopError], int], ...] = (
    (AuthenticationRequiredError, 401),
    (InvalidRequestError, 400),
    (ImportSessionNotFoundError, 404),
    (ImportTemplateNotFoundError, 404),
    (JobNotFoundError, 404),
    (ImportSessionForbiddenError, 403),
    (RollbackForbiddenError, 403),
    (FileTooLargeError, 413),
    (UnsupportedMediaTypeError, 415),
    (FileFormatError, 400),
    (ImportPipelineError, 400),
    (RollbackError, 400),
    (JobIdempotencyError, 409),
    (BusinessRuleError, 422),
)


@dataclass(frozen=True)
class ApiErrorSpec:
    status_code: int
    code: str
    message: str
    details: dict[str, Any] | None = None


def status_for(exc: CoopError) -> int:
    for exc_type, status_code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return 500


def _details(exc: Exception) -> dict[str, Any] | None:
    details = {
        key: value if isinstance(value, (str, int, float, bool, list, tuple)) or value is None else str(value)
        for key, value in vars(exc).items()
        if not key.startswith("_") and key != "stack"
    }
    return details or None


def normalize_exception(exc: Exception) -> ApiErrorSpec:
    if isinstance(exc, CoopError):
        return ApiErrorSpec(
            status_code=status_for(exc),
            code=exc.code,
            message=str(exc),
            details=_details(exc),
        )
    return ApiErrorSpec(
        status_code=500,
        code=ERROR_CODE_INTERNAL,
        message="An unexpected error occurred",
    )


def api_error_response(spec: ApiErrorSpec) -> JSONResponse:
    return JSONResponse(
        status_code=spec.status_code,
        content={
            "error": {
                "code": spec.code,
                "message": spec.message,
                "details": spec.details,
            }
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CoopError)
    async def _coop_exception_handler(request: Request, exc: CoopError):
        spec = normalize_exception(exc)
        log = logger.error if spec.status_code >= 500 else logger.info
        log(
            "api_request_rejected",
            extra={
                "path": request.url.path,
                "status_code": spec.status_code,
                "error_code": spec.code,
            },
        )
        return api_error_response(spec)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError):
        return api_error_response(
            ApiErrorSpec(
                status_code=400,
                code=ERROR_CODE_VALIDATION,
                message="Request validation failed",
                details={"errors": [_validation_error(e) for e in exc.errors()]},
            )
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "api_unhandled_exception",
            extra={"path": request.url.path, "error_type": type(exc).__name__},
            exc_info=exc,
        )
        return api_error_response(normalize_exception(exc))


def _validation_error(error: dict[str, Any]) -> dict[str, Any]:
    return {
        "loc": [str(part) for part in error.get("loc", ())],
        "msg": str(error.get("msg", "")),
        "type": str(error.get("type", "")),
    }
