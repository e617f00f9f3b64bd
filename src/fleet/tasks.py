"""Background task runner for fire-and-forget pipeline work.

Agent stream readers and post-exit label reconciliation run after the
HTTP response has been sent, so there is no caller to report failures
to. BackgroundTaskRunner keeps a strong reference to every task until it
finishes and logs any exception with the context it was spawned with.
Failures are never re-raised.
"""

import asyncio
import logging
from typing import Any, Coroutine, Dict, Set


logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Owns fire-and-forget asyncio tasks.

    Example:
        >>> runner = BackgroundTaskRunner()
        >>> runner.spawn(reconcile_labels(), name="exit-handler", epic_id="fac-3")
        >>> await runner.drain()
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self._context: Dict[asyncio.Task, Dict[str, Any]] = {}

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        name: str,
        **context: Any,
    ) -> asyncio.Task:
        """Schedule a coroutine on the running loop.

        Args:
            coro: The coroutine to run.
            name: Task name, used in log records.
            **context: Extra fields attached to failure log records.

        Returns:
            The created task.
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        self._context[task] = context
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        context = self._context.pop(task, {})

        if task.cancelled():
            logger.info(
                "Background task cancelled",
                extra={"task": task.get_name(), **context},
            )
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed: %s",
                exc,
                exc_info=exc,
                extra={"task": task.get_name(), **context},
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
