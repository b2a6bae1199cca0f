"""Shared background task utilities."""

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class BackgroundDispatcher:
    """Fire-and-forget runner with bounded concurrency.

    Submitted coroutines are scheduled immediately but only ``max_concurrency``
    of them run at once. Failures are never retried; each one is logged as a
    dead-letter event and counted.
    """

    def __init__(self, max_concurrency: int = 8):
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task[Any]] = set()
        self.max_concurrency = max_concurrency
        self.submitted = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _run(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        async with self._semaphore:
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error(
                    "Background write dead-lettered",
                    task_name=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def submit(self, coro: Coroutine[Any, Any, Any], *, name: str = "") -> asyncio.Task[Any]:
        """Schedule ``coro`` without awaiting it."""
        task = asyncio.create_task(self._run(coro, name))
        self.submitted += 1
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every pending task, including ones submitted while draining."""
        while self._tasks:
            pending = list(self._tasks)
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                logger.warning("Background drain timed out", pending=len(not_done))
                return

    def stats(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "submitted": self.submitted,
            "failed": self.failed,
            "max_concurrency": self.max_concurrency,
        }


_dispatcher: BackgroundDispatcher | None = None


def get_background_dispatcher() -> BackgroundDispatcher:
    """Get the global background dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        from gateway.core.config import get_settings

        _dispatcher = BackgroundDispatcher(get_settings().background_max_concurrency)
    return _dispatcher
