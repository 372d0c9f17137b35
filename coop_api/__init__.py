"""
coop_api -- FastAPI surface for the import pipeline.

Routes under ``/import`` call ImportService / TemplateService through a
per-request unit of work.  Domain exceptions are mapped to HTTP statuses
in one place (``errors.register_exception_handlers``).
"""

from coop_api.app import create_app

__all__ = ["create_app"]
