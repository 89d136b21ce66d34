"""Fire-and-forget cache work on the event loop.

This module provides CacheWriter, which runs write-through, revalidation
and maintenance coroutines as background tasks so the response can be
returned before the work completes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Coroutine
    from typing import Any

logger = logging.getLogger(__name__)


class CacheWriter:
    """Background task tracker for cache writes.

    Keeps a strong reference to every task until it finishes, logs
    failures instead of raising them, and lets the owner wait for or
    cancel whatever is still pending.

    Usage:
        writer = CacheWriter()
        writer.spawn(partition.put(key, response), name='cache-put')  # returns immediately
        await writer.drain()                   # wait for pending work
        await writer.close()                   # cancel leftovers
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._stats_completed = 0
        self._stats_failed = 0

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        """Run ``coro`` in the background. Errors are logged, never raised."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._stats_failed += 1
            logger.error('Background cache task %s failed: %s', task.get_name(), exc, exc_info=exc)
            return
        self._stats_completed += 1

    def pending(self) -> int:
        return len(self._tasks)

    @property
    def stats(self) -> dict:
        """Get writer statistics."""
        return {
            'completed': self._stats_completed,
            'failed': self._stats_failed,
            'pending': self.pending(),
        }

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until no background task is left.

        Tasks spawned by running tasks (e.g. maintenance after a write)
        are awaited as well.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            done, _ = await asyncio.wait(set(self._tasks), timeout=remaining)
            if not done and deadline is not None and loop.time() >= deadline:
                logger.warning('CacheWriter drain timed out with %d tasks pending', self.pending())
                return

    async def close(self) -> None:
        """Cancel pending tasks and wait for them to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(
            'CacheWriter closed: %d completed, %d failed',
            self._stats_completed,
            self._stats_failed,
        )
