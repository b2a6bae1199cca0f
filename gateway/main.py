"""FastAPI application entry point."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.gzip import GZipMiddleware

from gateway.api import admin_router, assistant_router, health_router
from gateway.core.config import get_settings
from gateway.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from gateway.core.logging import get_logger, setup_logging
from gateway.core.tasks import get_background_dispatcher
from gateway.db.session import close_db, init_db
from gateway.services.cache.store import get_cache_store
from gateway.services.gateway import drain_conversation_gateway
from gateway.services.rate_limit import get_rate_limit_service
from gateway.services.upstream import close_upstream, prewarm_upstream

# Initialize logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Startup:
    - Initialize database tables (with retry)
    - Pre-warm the upstream adapter

    Shutdown:
    - Let abandoned upstream exchanges finish
    - Drain pending background writes (usage, quota, sessions)
    - Close upstream, rate limiter, cache and database clients
    """
    settings = get_settings()

    logger.info(
        "Starting application",
        app_name=settings.app_name,
        version=settings.app_version,
        bots=sorted(settings.bot_assistants),
        debug=settings.debug,
    )

    for attempt in range(3):
        try:
            await init_db()
            break
        except Exception as exc:
            if attempt == 2:
                logger.error("Failed to initialize database after 3 attempts", error=str(exc))
                raise
            logger.warning(
                "Database init failed, retrying...",
                attempt=attempt + 1,
                error=str(exc),
            )
            await asyncio.sleep(2 ** attempt)
    logger.info("Database initialized")

    prewarm_upstream()

    yield

    logger.info("Shutting down application")

    await drain_conversation_gateway(timeout=settings.upstream_max_wait_seconds)
    dispatcher = get_background_dispatcher()
    await dispatcher.drain(timeout=settings.upstream_max_wait_seconds)
    logger.info("Background writes drained", **dispatcher.stats())

    await close_upstream()
    await get_rate_limit_service().close()
    await get_cache_store().close()
    await close_db()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Any, call_next: Any) -> Any:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not get_settings().debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Multi-tenant gateway to licensed conversational assistants",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(assistant_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")

    return app


# Create application instance
app = create_app()
