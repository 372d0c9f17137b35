from coop_api.routers.imports import router as imports_router
from coop_api.routers.templates import router as templates_router

__all__ = ["imports_router", "templates_router"]
