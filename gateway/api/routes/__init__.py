"""Routes module exports."""

from gateway.api.routes.admin import router as admin_router
from gateway.api.routes.assistant import router as assistant_router
from gateway.api.routes.health import router as health_router

__all__ = [
    "admin_router",
    "assistant_router",
    "health_router",
]
