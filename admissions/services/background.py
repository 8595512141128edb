"""In-process background work for the request path.

Webhook deliveries are spawned here so the HTTP response never waits on
them. Tasks live only in this process: a crash, or a serverless host that
freezes the process once the response is sent, drops whatever is still
running. There is no outbox.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """Fire-and-forget task runner that keeps strong references until done."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed: %s", task.get_name(), exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: float = 15.0) -> None:
        """Wait for outstanding tasks; cancel whatever is left after *timeout*."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        logger.info("Waiting for %s background task(s) to finish", len(tasks))
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("Cancelled %s background task(s) after %.1fs", len(still_running), timeout)


_dispatcher: Optional[BackgroundDispatcher] = None


def get_dispatcher() -> BackgroundDispatcher:
    """Return the process-wide dispatcher (FastAPI dependency)."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = BackgroundDispatcher()
    return _dispatcher
