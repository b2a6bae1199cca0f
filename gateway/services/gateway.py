"""Conversation gateway orchestrator.

Coordinates one question from a user to a branded bot:
- PreferenceResolver (answer style and detail level)
- ResponseCache (answers shared or personalized by question class)
- QuotaGuard (license and monthly quota, only on a cache miss)
- SessionCache (upstream thread reuse per user and bot)
- Upstream adapter (message, run and polling)
- UsageRecorder (token usage and quota increment, off the response path)
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from gateway.core.config import get_settings
from gateway.core.exceptions import ErrorKind, GatewayError, UpstreamError
from gateway.core.logging import get_logger
from gateway.core.tasks import get_background_dispatcher
from gateway.db.repository import get_gateway_store
from gateway.db.store import UsageRecord
from gateway.services.cache.response import ResponseCache, build_key, get_response_cache
from gateway.services.preferences import PreferenceOverrides, PreferenceResolver, Preferences
from gateway.services.quota import AuthorizationContext, QuotaGuard
from gateway.services.session_cache import SessionCache
from gateway.services.upstream import (
    CompletionStatus,
    UpstreamAdapter,
    get_upstream_adapter,
    wait_for_completion,
)
from gateway.services.usage import UsageRecorder

logger = get_logger(__name__)


@dataclass(frozen=True)
class AskResult:
    answer: str
    tokens_used: int
    preferences_applied: Preferences
    cached: bool = False


class ConversationGateway:
    """Answer questions through the upstream with caching and licensing."""

    def __init__(
        self,
        *,
        assistants: dict[str, str],
        upstream: UpstreamAdapter,
        response_cache: ResponseCache,
        session_cache: SessionCache,
        preferences: PreferenceResolver,
        quota_guard: QuotaGuard,
        usage: UsageRecorder,
        max_wait_seconds: float | None = None,
        poll_interval_seconds: float | None = None,
    ):
        settings = get_settings()
        self._assistants = dict(assistants)
        self.upstream = upstream
        self.response_cache = response_cache
        self.session_cache = session_cache
        self.preferences = preferences
        self.quota_guard = quota_guard
        self.usage = usage
        self._max_wait = max_wait_seconds or settings.upstream_max_wait_seconds
        self._poll_interval = poll_interval_seconds or settings.upstream_poll_interval_seconds
        # Exchanges whose caller went away; held until they finish
        self._abandoned: set[asyncio.Task[Any]] = set()

    @property
    def abandoned_exchanges(self) -> int:
        return len(self._abandoned)

    async def drain_abandoned(self, timeout: float | None = None) -> None:
        """Wait for exchanges that outlived their callers."""
        if not self._abandoned:
            return
        _, not_done = await asyncio.wait(list(self._abandoned), timeout=timeout)
        if not_done:
            logger.warning("Abandoned exchanges still running", pending=len(not_done))

    def available_bots(self) -> list[str]:
        return sorted(self._assistants)

    def _assistant_for(self, bot_id: str) -> str:
        assistant_id = self._assistants.get(bot_id)
        if not assistant_id:
            raise GatewayError(
                ErrorKind.BOT_NOT_CONFIGURED,
                f"Bot '{bot_id}' is not configured.",
                {"bot": bot_id},
            )
        return assistant_id

    async def ask(
        self,
        user_id: str,
        bot_id: str,
        question: str,
        preferences: PreferenceOverrides | None = None,
        *,
        role: str = "user",
    ) -> AskResult:
        assistant_id = self._assistant_for(bot_id)

        resolved = await self.preferences.resolve(user_id, bot_id, preferences)
        key = build_key(bot_id, question, resolved.style.value, resolved.detail_level.value)

        cached_answer = await self.response_cache.get(key)
        if cached_answer is not None:
            logger.info("Answer served from cache", user_id=user_id, bot=bot_id)
            return AskResult(
                answer=cached_answer,
                tokens_used=0,
                preferences_applied=resolved,
                cached=True,
            )

        context = await self.quota_guard.authorize(user_id, bot_id, role)
        handle = await self.session_cache.acquire(user_id, bot_id)
        instructions = self.preferences.build_instructions(
            bot_id, resolved.detail_level, resolved.style, resolved.nickname
        )

        exchange = asyncio.create_task(
            self._exchange(context, handle, assistant_id, question, instructions)
        )
        try:
            answer, tokens = await asyncio.shield(exchange)
        except asyncio.CancelledError:
            # The spent call still gets accounted; its answer is not cached
            logger.info("Caller abandoned request, upstream call continues", user_id=user_id, bot=bot_id)
            self._abandoned.add(exchange)
            exchange.add_done_callback(self._abandoned.discard)
            exchange.add_done_callback(_log_abandoned_exchange)
            raise

        await self.response_cache.set(key, answer)
        logger.info(
            "Question answered",
            user_id=user_id,
            bot=bot_id,
            tokens=tokens,
            remaining=context.remaining,
        )
        return AskResult(answer=answer, tokens_used=tokens, preferences_applied=resolved)

    async def _exchange(
        self,
        context: AuthorizationContext,
        handle: str,
        assistant_id: str,
        question: str,
        instructions: str,
    ) -> tuple[str, int]:
        """Send the question, wait for the answer and account for it."""
        started = time.perf_counter()
        try:
            call_id = await self.upstream.send_message(
                handle, question, assistant_id=assistant_id, instructions=instructions
            )
            completion = await wait_for_completion(
                self.upstream,
                handle,
                call_id,
                max_wait=self._max_wait,
                poll_interval=self._poll_interval,
            )
        except asyncio.TimeoutError as e:
            logger.error("Upstream call timed out", bot=context.bot_id, max_wait=self._max_wait)
            raise GatewayError(
                ErrorKind.UPSTREAM_TIMEOUT,
                "The assistant took too long to answer. Please retry.",
            ) from e
        except UpstreamError as e:
            logger.error("Upstream call failed", bot=context.bot_id, error=str(e))
            raise GatewayError(
                ErrorKind.UPSTREAM_FAILED,
                "The assistant could not process the question. Please retry.",
            ) from e

        if completion.status is not CompletionStatus.COMPLETED:
            logger.error(
                "Upstream call ended without an answer",
                bot=context.bot_id,
                call_id=call_id,
                error=completion.error,
            )
            raise GatewayError(
                ErrorKind.UPSTREAM_FAILED,
                "The assistant could not process the question. Please retry.",
                {"status": completion.status.value},
            )

        if not completion.answer_text:
            logger.error("Upstream call completed without answer text", bot=context.bot_id, call_id=call_id)
            raise GatewayError(
                ErrorKind.UPSTREAM_FAILED,
                "The assistant returned an empty answer. Please retry.",
                {"status": completion.status.value},
            )

        latency_ms = int((time.perf_counter() - started) * 1000)
        self.usage.record(
            UsageRecord(
                user_id=context.user_id,
                company_id=context.company_id,
                bot_id=context.bot_id,
                session_handle=handle,
                call_id=call_id,
                input_tokens=completion.input_tokens,
                output_tokens=completion.output_tokens,
                latency_ms=latency_ms,
                occurred_at=datetime.now(timezone.utc),
            )
        )
        self.usage.increment_quota(context.license_id)
        return completion.answer_text, completion.total_tokens

    async def describe_bot(self, bot_id: str) -> dict[str, Any]:
        """Configuration diagnostics; never on the request path."""
        assistant_id = self._assistant_for(bot_id)
        try:
            info = await self.upstream.describe(assistant_id)
        except UpstreamError as e:
            logger.warning("Assistant diagnostics failed", bot=bot_id, error=str(e))
            return {
                "bot": bot_id,
                "assistant_id": assistant_id,
                "reachable": False,
                "error": str(e),
            }
        return {
            "bot": bot_id,
            "assistant_id": assistant_id,
            "reachable": True,
            "display_name": info.display_name,
            "model": info.model,
            "capabilities": info.capabilities,
        }


def _log_abandoned_exchange(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    if exc := task.exception():
        logger.warning("Abandoned upstream call failed", error=str(exc))
    else:
        logger.info("Abandoned upstream call completed")


_gateway: ConversationGateway | None = None


def get_conversation_gateway() -> ConversationGateway:
    """Get or create the global gateway wired to the production services."""
    global _gateway

    if _gateway is None:
        settings = get_settings()
        store = get_gateway_store()
        upstream = get_upstream_adapter()
        dispatcher = get_background_dispatcher()
        _gateway = ConversationGateway(
            assistants=settings.bot_assistants,
            upstream=upstream,
            response_cache=get_response_cache(),
            session_cache=SessionCache(store, upstream, dispatcher),
            preferences=PreferenceResolver(store),
            quota_guard=QuotaGuard(store),
            usage=UsageRecorder(store, store, dispatcher),
        )

    return _gateway


async def drain_conversation_gateway(timeout: float | None = None) -> None:
    """Let abandoned exchanges finish their accounting before shutdown."""
    if _gateway is not None:
        await _gateway.drain_abandoned(timeout)
