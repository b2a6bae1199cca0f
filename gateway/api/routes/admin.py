"""Operator endpoints for cache and session administration."""

from fastapi import APIRouter, HTTPException, Query, status

from gateway.api.deps import Gateway, OperatorCaller
from gateway.api.schemas import (
    BotDiagnostics,
    CacheStatsResponse,
    FlushResponse,
    SessionStatsResponse,
    SuccessResponse,
)
from gateway.core.logging import get_logger
from gateway.core.tasks import get_background_dispatcher

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/cache/stats", response_model=CacheStatsResponse, summary="Response cache statistics")
async def cache_stats(operator: OperatorCaller, gateway: Gateway) -> CacheStatsResponse:
    return CacheStatsResponse(**await gateway.response_cache.stats())


@router.post("/cache/stats/reset", response_model=SuccessResponse, summary="Reset cache counters")
async def reset_cache_stats(operator: OperatorCaller, gateway: Gateway) -> SuccessResponse:
    gateway.response_cache.reset_stats()
    logger.info("Cache stats reset by operator", operator_id=operator.user_id)
    return SuccessResponse(message="Cache statistics reset")


@router.delete("/cache", response_model=FlushResponse, summary="Flush cached answers")
async def flush_cache(
    operator: OperatorCaller,
    gateway: Gateway,
    prefix: str = Query(default="bot:", min_length=4, max_length=200),
) -> FlushResponse:
    """Delete cached answers whose key starts with `prefix` (e.g. `bot:MACF:`)."""
    try:
        deleted = await gateway.response_cache.flush(prefix)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info("Cache flushed by operator", operator_id=operator.user_id, prefix=prefix)
    return FlushResponse(prefix=prefix, deleted_count=deleted)


@router.get("/sessions/stats", response_model=SessionStatsResponse, summary="Session cache statistics")
async def session_stats(operator: OperatorCaller, gateway: Gateway) -> SessionStatsResponse:
    return SessionStatsResponse(
        **gateway.session_cache.stats(),
        background=get_background_dispatcher().stats(),
    )


@router.get(
    "/bots/{bot_id}/diagnostics",
    response_model=BotDiagnostics,
    summary="Check a bot's upstream assistant",
)
async def bot_diagnostics(bot_id: str, operator: OperatorCaller, gateway: Gateway) -> BotDiagnostics:
    return BotDiagnostics(**await gateway.describe_bot(bot_id))
