"""Tracking for in-flight background sends."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


class TaskManager:
    """Keep references to background asyncio tasks until they finish.

    In-flight sends are never cancelled: closing the application waits for
    them to resolve instead.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def add(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        """Track a task; it drops out of tracking when done."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(self._log_exception)
        return task

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def _log_exception(self, task: asyncio.Task[Any]) -> None:
        """Log unhandled exceptions from background tasks so they are not silently lost."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning(
                "task.background.exception",
                extra={
                    "event": "task.background.exception",
                    "task": task.get_name(),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )

    async def await_all(self) -> None:
        """Await all tracked tasks without cancelling them."""
        while self._tasks:
            pending = list(self._tasks)
            await asyncio.gather(*pending, return_exceptions=True)
            self._tasks.difference_update(pending)
