"""Detached background task scheduling.

Fire-and-forget work (async-mode pipeline runs, working directory cleanup)
is handed to a BackgroundTaskScheduler. Callers get no handle back; a
failure inside a detached task is only visible in the logs and metrics.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from skillrunner.core.monitoring import Metrics

logger = logging.getLogger(__name__)


class BackgroundTaskScheduler:
    """Owns every detached task so none is garbage collected mid-flight."""

    def __init__(self, metrics: Metrics | None = None) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._metrics = metrics
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> None:
        """Run a coroutine detached from the caller.

        Args:
            coro: Coroutine to schedule on the running loop.
            name: Task name used in logs.
        """
        if self._closed:
            coro.close()
            logger.warning("Scheduler closed - dropping background task", extra={"task": name})
            return
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task cancelled", extra={"task": task.get_name()})
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed: %s",
                exc,
                extra={"task": task.get_name(), "error_type": type(exc).__name__},
                exc_info=exc,
            )
            if self._metrics is not None:
                self._metrics.record_error(type(exc).__name__)

    async def drain(self, timeout: float = 10.0) -> int:
        """Stop accepting work and wait for in-flight tasks.

        Args:
            timeout: Seconds to wait before giving up on stragglers.

        Returns:
            Number of tasks still running when the wait ended.
        """
        self._closed = True
        if not self._tasks:
            return 0
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("%d background task(s) still running at shutdown", len(pending))
        return len(pending)
