"""Fire-and-forget background task group.

Work submitted here runs detached from the request that scheduled it.
Concurrency is bounded by a semaphore, each task gets its own timeout,
and failures are logged instead of propagating to the caller.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from call_bridge.core.logging import get_logger


log = get_logger(__name__)


class BackgroundTaskGroup:
    """Bounded set of detached asyncio tasks."""

    def __init__(
        self,
        name: str,
        *,
        max_concurrency: int = 50,
        timeout: float | None = None,
    ) -> None:
        """Initialize the task group.

        Args:
            name: Group name used in log entries
            max_concurrency: Maximum number of tasks running at once
            timeout: Per-task timeout in seconds (None disables it)
        """
        self.name = name
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def active_count(self) -> int:
        """Number of tasks scheduled and not yet finished."""
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, label: str = "") -> asyncio.Task | None:
        """Schedule a coroutine without waiting for it.

        Args:
            coro: Coroutine to run
            label: Identifier included in log entries (e.g. a call id)

        Returns:
            The scheduled task, or None if the group is shut down.
        """
        if self._closed:
            log.warning("Task group closed, dropping work", group=self.name, label=label)
            coro.close()
            return None

        task = asyncio.create_task(self._run(coro, label), name=f"{self.name}:{label}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], label: str) -> Any:
        async with self._semaphore:
            try:
                if self.timeout is None:
                    return await coro
                return await asyncio.wait_for(coro, timeout=self.timeout)
            except asyncio.TimeoutError:
                log.error(
                    "Background task timed out",
                    group=self.name,
                    label=label,
                    timeout=self.timeout,
                )
            except asyncio.CancelledError:
                log.warning("Background task cancelled", group=self.name, label=label)
                raise
            except Exception as e:
                log.exception(
                    "Background task failed",
                    group=self.name,
                    label=label,
                    error=str(e),
                )
        return None

    async def drain(self, timeout: float = 30.0) -> None:
        """Stop accepting work and wait for running tasks.

        Tasks still running after ``timeout`` are cancelled.
        """
        self._closed = True
        if not self._tasks:
            return

        pending = list(self._tasks)
        log.info("Draining background tasks", group=self.name, count=len(pending))

        done, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            log.warning(
                "Background tasks did not finish, cancelling",
                group=self.name,
                count=len(still_running),
            )
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
