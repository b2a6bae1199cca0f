"""Health check and monitoring endpoints."""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from gateway.api.schemas import HealthResponse, ServiceHealth
from gateway.core.config import get_settings
from gateway.db.session import check_db_health
from gateway.services.cache.store import get_cache_store

router = APIRouter(tags=["Health"])

_server_start_time = datetime.now(timezone.utc)


@router.get("/", summary="Root endpoint")
async def root() -> dict[str, Any]:
    """API name, version and environment."""
    settings = get_settings()

    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "healthy",
        "environment": settings.environment,
        "bots": sorted(settings.bot_assistants),
        "uptime_seconds": int((datetime.now(timezone.utc) - _server_start_time).total_seconds()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "documentation": "/docs",
    }


async def _timed_health_check(
    name: str,
    check_fn: Any,
    timeout: float = 5.0,
) -> tuple[str, bool, float, str | None]:
    """Execute a health check and measure its latency with timeout.

    Returns:
        Tuple of (name, healthy, latency_ms, error_message)
    """
    start = time.perf_counter()
    try:
        result = await asyncio.wait_for(check_fn(), timeout=timeout)
        return (name, result, (time.perf_counter() - start) * 1000, None)
    except asyncio.TimeoutError:
        latency = (time.perf_counter() - start) * 1000
        return (name, False, latency, f"Health check timed out after {timeout}s")
    except Exception as e:
        return (name, False, (time.perf_counter() - start) * 1000, str(e))


@router.get("/health", response_model=HealthResponse, summary="Database and cache health")
async def health_check() -> HealthResponse:
    """
    Check the database and the cache in parallel.

    The database is required (unhealthy when down); the cache is optional
    (degraded when down or not configured).
    """
    settings = get_settings()
    cache_store = get_cache_store()
    services: dict[str, ServiceHealth] = {}
    overall_status = "healthy"

    checks = [_timed_health_check("database", check_db_health)]
    if cache_store.is_available:
        checks.append(_timed_health_check("cache", cache_store.check_health))

    for name, healthy, latency, error in await asyncio.gather(*checks):
        details: dict[str, Any] = (
            {"type": "postgresql"} if name == "database" else {"type": "redis", "provider": "upstash"}
        )
        if error:
            details["error"] = error

        if name == "database":
            services[name] = ServiceHealth(
                status="healthy" if healthy else "unhealthy",
                latency_ms=round(latency, 2),
                details=details,
            )
            if not healthy:
                overall_status = "unhealthy"
        else:
            services[name] = ServiceHealth(
                status="healthy" if healthy else "degraded",
                latency_ms=round(latency, 2),
                details=details,
            )
            if not healthy and overall_status == "healthy":
                overall_status = "degraded"

    if "cache" not in services:
        services["cache"] = ServiceHealth(
            status="degraded",
            details={"type": "redis", "provider": "not configured"},
        )
        if overall_status == "healthy":
            overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=settings.app_version,
        services=services,
    )


@router.get("/health/live", summary="Liveness probe")
async def liveness() -> dict[str, str]:
    """Returns 200 while the process is running; no dependency checks."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/ready", summary="Readiness probe")
async def readiness() -> JSONResponse:
    """Returns 503 until the database answers."""
    _, healthy, _, error = await _timed_health_check("database", check_db_health)
    if not healthy:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "reason": "database_unavailable",
                "message": error or "Database connection failed",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "status": "ready",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
