"""Registry for background asyncio tasks spawned by the coordinator and sessions.

Every fire-and-forget task (builds, refreshes, host kills, capture pollers)
goes through TaskRegistry.spawn so shutdown can cancel and await all of them.
"""

from __future__ import annotations

import asyncio
from typing import Coroutine, TypeVar

from devtrack.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class TaskRegistry:
    """Tracks spawned tasks and cancels the survivors on shutdown.

    Example:
        registry = TaskRegistry()
        registry.spawn(coordinator.refresh(), name="refresh")
        await registry.shutdown(timeout=5.0)
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[object]] = set()
        self._closed = False

    def _on_task_done(self, task: asyncio.Task[object]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, coro: Coroutine[object, object, T], name: str | None = None) -> asyncio.Task[T]:
        """Schedule ``coro`` on the running loop and track it until it finishes.

        Raises RuntimeError after shutdown; the coroutine is closed first so it
        does not leak a "never awaited" warning.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("TaskRegistry is shut down")
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        logger.debug("Spawned task %s (total: %d)", name or f"<unnamed-{id(task)}>", len(self._tasks))
        return task

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel all tracked tasks and wait up to ``timeout`` seconds for them."""
        self._closed = True
        if not self._tasks:
            return

        task_count = len(self._tasks)
        logger.info("Shutting down %d tracked tasks (timeout=%.1fs)", task_count, timeout)
        for task in list(self._tasks):
            if not task.done():
                task.cancel()

        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("Shutdown timeout: %d/%d tasks still pending after %.1fs", len(pending), task_count, timeout)
            for task in pending:
                logger.warning("Pending task: %s", task.get_name())

    async def drain(self) -> None:
        """Wait until every task tracked right now (and any they spawn) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def task_count(self) -> int:
        return len(self._tasks)
