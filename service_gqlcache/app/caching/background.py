"""
Tracked background work.

Cache writes run after the response has been handed back to the caller, but
they are never detached: every task is held here until it finishes and
``drain`` joins whatever is still pending before the process shuts down.
"""

import asyncio
from typing import Awaitable, Optional, Set

from shared.logging import get_logger


class BackgroundTaskTracker:
    """Owns fire-after-response tasks until they complete."""

    def __init__(self, name: str = "background"):
        self.name = name
        self.logger = get_logger(f"gqlcache.{name}")
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, *, name: Optional[str] = None) -> asyncio.Task:
        """Schedule ``coro`` and keep a reference until it finishes."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self.logger.warning("Background task cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Background task failed", task=task.get_name(), error=str(exc))

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every pending task, including ones spawned while waiting."""
        while self._tasks:
            pending = list(self._tasks)
            self.logger.info("Draining background tasks", pending=len(pending))
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            self._tasks.difference_update(done)
            if not_done:
                self.logger.warning("Background tasks still pending after drain timeout", pending=len(not_done))
                return
