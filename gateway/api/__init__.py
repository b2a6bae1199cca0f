"""API module exports."""

from gateway.api.deps import CurrentCaller, Gateway, OperatorCaller
from gateway.api.routes import admin_router, assistant_router, health_router

__all__ = [
    # Routers
    "admin_router",
    "assistant_router",
    "health_router",
    # Dependencies
    "CurrentCaller",
    "Gateway",
    "OperatorCaller",
]
