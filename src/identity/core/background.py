"""Fire-and-forget background work with graceful draining."""

import asyncio
from collections.abc import Coroutine
from typing import Any

from src.identity.core.logging import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    """Keeps references to spawned tasks until they finish.

    A failing task is logged and otherwise ignored; it never affects the
    operation that spawned it.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending_count(self) -> int:
        """Get the current number of unfinished tasks."""
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Schedule ``coro`` on the running loop."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Background task cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Background task failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def drain(self, timeout: float) -> bool:
        """
        Wait for all outstanding tasks to complete.

        Args:
            timeout: Maximum time to wait in seconds

        Returns:
            True if all tasks completed within timeout, False otherwise
        """
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(
                f"Drain timeout after {timeout}s - {len(pending)} background tasks still running"
            )
            return False
        return True

    async def cancel_all(self) -> None:
        """Cancel every outstanding task and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
