"""
Cancellable context for one pipeline attempt.
"""

import asyncio
from typing import Coroutine, List, Optional
import logging

logger = logging.getLogger(__name__)


class PipelineContext:
    """
    Carries cancellation for every task of one attempt.

    Components start their concurrent work through ``spawn`` so that the
    orchestrator can cancel all of it at once when the attempt ends, whether
    it succeeded, failed or was stopped.

    Attributes:
        name: Pipeline name, used for task names and logs
        stop_event: Event set by the caller to request a stop
        deadline: Loop time at which the overall timeout expires (if any)
    """

    def __init__(
        self,
        name: str,
        stop_event: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None
    ):
        self.name = name
        self.stop_event = stop_event or asyncio.Event()
        self.deadline = deadline
        self._tasks: List[asyncio.Task] = []

    @property
    def stop_requested(self) -> bool:
        return self.stop_event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a timeout."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - asyncio.get_running_loop().time())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and self.remaining() == 0.0

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        """Start a task owned by this attempt."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(f"{self.name}:{name}")
        self._tasks.append(task)
        return task

    async def wait_stopped(self) -> None:
        await self.stop_event.wait()

    async def shutdown(self) -> None:
        """Cancel every task still running and wait until they have unwound."""
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.debug(f"Cancelling {len(pending)} in-flight tasks for {self.name}")
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception) and task in pending:
                logger.debug(f"Task {task.get_name()} ended with {result!r} during shutdown")
        self._tasks.clear()
