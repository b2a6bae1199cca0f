"""Assistant endpoints: ask a branded bot a question."""

from fastapi import APIRouter, Depends

from gateway.api.deps import CurrentCaller, Gateway, check_ask_rate_limit
from gateway.api.schemas import AskRequest, AskResponse, BotsResponse, ErrorResponse, PreferencesOut
from gateway.core.logging import bind_request_context, get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/assistant", tags=["Assistant"])


@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Ask a bot a question",
    dependencies=[Depends(check_ask_rate_limit)],
    responses={
        403: {"model": ErrorResponse, "description": "No company, license or bot access"},
        404: {"model": ErrorResponse, "description": "Bot not configured"},
        429: {"model": ErrorResponse, "description": "Rate limit or monthly quota exceeded"},
        502: {"model": ErrorResponse, "description": "Upstream failure (retryable)"},
        503: {"model": ErrorResponse, "description": "Session or store unavailable"},
        504: {"model": ErrorResponse, "description": "Upstream timeout (retryable)"},
    },
)
async def ask(request: AskRequest, caller: CurrentCaller, gateway: Gateway) -> AskResponse:
    """
    Ask a question to a bot on behalf of the authenticated user.

    Answers to recurring questions are served from cache with
    `tokens_used == 0` and do not count against the monthly quota.
    """
    bind_request_context(user_id=caller.user_id, bot=request.chatbot_id, role=caller.role)
    overrides = request.preferences.to_overrides() if request.preferences else None
    result = await gateway.ask(
        caller.user_id,
        request.chatbot_id,
        request.question,
        overrides,
        role=caller.role,
    )
    return AskResponse(
        answer=result.answer,
        tokens_used=result.tokens_used,
        preferences_applied=PreferencesOut.from_preferences(result.preferences_applied),
        cached=result.cached,
    )


@router.get("/bots", response_model=BotsResponse, summary="List configured bots")
async def list_bots(caller: CurrentCaller, gateway: Gateway) -> BotsResponse:
    return BotsResponse(bots=gateway.available_bots())
