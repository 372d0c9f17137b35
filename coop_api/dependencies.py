"""
Request-scoped dependencies: caller identity and units of work.

Authentication happens upstream; the gateway forwards the authenticated
user id in ``X-User-Id``.  Each route opens its own unit of work, so a
raised error rolls back everything the request wrote before the
exception handler renders it.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from fastapi import Header, Request

from coop_batch.orchestrator import JobOrchestrator
from coop_kernel.db.engine import session_scope
from coop_kernel.exceptions import AuthenticationRequiredError
from coop_ingestion.services.import_service import ImportService
from coop_ingestion.services.template_service import TemplateService

CALLER_HEADER = "X-User-Id"


def get_caller_id(x_user_id: str | None = Header(default=None, alias=CALLER_HEADER)) -> UUID:
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationRequiredError(f"Missing {CALLER_HEADER} header")
    try:
        return UUID(x_user_id.strip())
    except ValueError:
        raise AuthenticationRequiredError(f"Malformed {CALLER_HEADER} header") from None


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


@contextmanager
def import_service_scope(orchestrator: JobOrchestrator) -> Iterator[ImportService]:
    with session_scope(orchestrator.session_factory) as session:
        yield orchestrator.import_service(session)


@contextmanager
def template_service_scope(orchestrator: JobOrchestrator) -> Iterator[TemplateService]:
    with session_scope(orchestrator.session_factory) as session:
        yield orchestrator.template_service(session)
