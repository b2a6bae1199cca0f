"""Upstream conversational-AI adapters.

The gateway talks to the upstream through a small session-oriented
interface: open a session (thread), post a message that starts a call
(run), and check the call until it reaches a terminal state.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from openai import AsyncOpenAI

from gateway.core.config import get_settings
from gateway.core.exceptions import UpstreamError
from gateway.core.logging import get_logger

logger = get_logger(__name__)


class CompletionStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CompletionStatus.COMPLETED, CompletionStatus.FAILED)


@dataclass
class Completion:
    """State of one upstream call."""

    status: CompletionStatus
    answer_text: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    error: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class AssistantInfo:
    """Configuration diagnostics for an upstream assistant."""

    assistant_id: str
    display_name: str | None
    model: str | None
    capabilities: list[str] = field(default_factory=list)


class UpstreamAdapter(ABC):
    """Abstract base class for upstream conversation services."""

    provider_name: str = "base"

    @abstractmethod
    async def create_session(self) -> str:
        """Open a new conversation session and return its handle."""
        ...

    @abstractmethod
    async def send_message(
        self,
        handle: str,
        text: str,
        *,
        assistant_id: str,
        instructions: str | None = None,
    ) -> str:
        """Post ``text`` on the session and start a call; return the call id."""
        ...

    @abstractmethod
    async def await_completion(self, handle: str, call_id: str) -> Completion:
        """Report the current state of a call (single check, no waiting)."""
        ...

    @abstractmethod
    async def describe(self, assistant_id: str) -> AssistantInfo:
        ...

    async def close(self) -> None:
        return None


_RUN_STATUS = {
    "queued": CompletionStatus.QUEUED,
    "in_progress": CompletionStatus.RUNNING,
    "cancelling": CompletionStatus.RUNNING,
    "completed": CompletionStatus.COMPLETED,
}


class OpenAIAssistantsAdapter(UpstreamAdapter):
    """Adapter for the OpenAI Assistants threads/runs API."""

    provider_name = "openai"

    def __init__(self, api_key: str | None = None, client: AsyncOpenAI | None = None):
        settings = get_settings()
        self.api_key = api_key or settings.openai_api_key

        if not self.api_key and client is None:
            logger.warning("OpenAI API key not configured")

        self.client = client or AsyncOpenAI(
            api_key=self.api_key or "missing",
            timeout=settings.openai_timeout_seconds,
        )

    def _ensure_configured(self) -> None:
        if not self.api_key:
            raise UpstreamError(self.provider_name, "API key not configured")

    async def create_session(self) -> str:
        self._ensure_configured()
        try:
            thread = await self.client.beta.threads.create()
        except Exception as e:
            logger.error("OpenAI thread creation failed", error=str(e))
            raise UpstreamError(self.provider_name, str(e)) from e
        if not thread.id:
            raise UpstreamError(self.provider_name, "thread created without an id")
        return thread.id

    async def send_message(
        self,
        handle: str,
        text: str,
        *,
        assistant_id: str,
        instructions: str | None = None,
    ) -> str:
        self._ensure_configured()
        try:
            await self.client.beta.threads.messages.create(
                thread_id=handle,
                role="user",
                content=text,
            )
            run = await self.client.beta.threads.runs.create(
                thread_id=handle,
                assistant_id=assistant_id,
                additional_instructions=instructions,
            )
        except Exception as e:
            logger.error("OpenAI run creation failed", thread_id=handle, error=str(e))
            raise UpstreamError(self.provider_name, str(e)) from e
        return run.id

    async def await_completion(self, handle: str, call_id: str) -> Completion:
        try:
            run = await self.client.beta.threads.runs.retrieve(call_id, thread_id=handle)
        except Exception as e:
            raise UpstreamError(self.provider_name, str(e)) from e

        status = _RUN_STATUS.get(run.status, CompletionStatus.FAILED)
        if status is not CompletionStatus.COMPLETED:
            error = None
            if status is CompletionStatus.FAILED:
                last_error = getattr(run, "last_error", None)
                error = getattr(last_error, "message", None) or run.status
            return Completion(status=status, error=error)

        usage = run.usage
        return Completion(
            status=status,
            answer_text=await self._latest_answer(handle, call_id),
            input_tokens=(usage.prompt_tokens if usage else 0) or 0,
            output_tokens=(usage.completion_tokens if usage else 0) or 0,
        )

    async def _latest_answer(self, handle: str, call_id: str) -> str | None:
        try:
            page = await self.client.beta.threads.messages.list(
                thread_id=handle,
                run_id=call_id,
                order="desc",
            )
        except Exception as e:
            raise UpstreamError(self.provider_name, str(e)) from e

        for message in page.data:
            if message.role != "assistant":
                continue
            for part in message.content:
                if part.type == "text":
                    return part.text.value
        return None

    async def describe(self, assistant_id: str) -> AssistantInfo:
        self._ensure_configured()
        try:
            assistant = await self.client.beta.assistants.retrieve(assistant_id)
        except Exception as e:
            raise UpstreamError(self.provider_name, str(e)) from e
        return AssistantInfo(
            assistant_id=assistant.id,
            display_name=assistant.name,
            model=assistant.model,
            capabilities=[tool.type for tool in (assistant.tools or [])],
        )

    async def close(self) -> None:
        await self.client.close()


async def wait_for_completion(
    adapter: UpstreamAdapter,
    handle: str,
    call_id: str,
    *,
    max_wait: float,
    poll_interval: float,
) -> Completion:
    """Poll until the call is terminal.

    Raises:
        asyncio.TimeoutError: the call did not finish within ``max_wait``.
    """

    async def _poll() -> Completion:
        attempts = 0
        while True:
            completion = await adapter.await_completion(handle, call_id)
            if completion.status.is_terminal:
                return completion
            attempts += 1
            logger.debug(
                "Upstream call pending",
                call_id=call_id,
                status=completion.status.value,
                attempt=attempts,
            )
            await asyncio.sleep(poll_interval)

    return await asyncio.wait_for(_poll(), timeout=max_wait)


_adapter: UpstreamAdapter | None = None


def get_upstream_adapter() -> UpstreamAdapter:
    """Get or create the global upstream adapter."""
    global _adapter
    if _adapter is None:
        _adapter = OpenAIAssistantsAdapter()
    return _adapter


def prewarm_upstream() -> None:
    """Build the adapter at startup to avoid first-request latency."""
    if not get_settings().openai_api_key:
        return
    try:
        get_upstream_adapter()
        logger.info("Pre-warmed OpenAI Assistants adapter")
    except Exception as e:
        logger.warning("Failed to pre-warm OpenAI adapter", error=str(e))


async def close_upstream() -> None:
    global _adapter
    if _adapter is not None:
        await _adapter.close()
        _adapter = None
