"""HTTP routers."""

from sessionkit.routers.cleanup import cleanup_router
from sessionkit.routers.sessions import sessions_router

__all__ = ["cleanup_router", "sessions_router"]
