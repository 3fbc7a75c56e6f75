"""Fire-and-forget background tasks on the running event loop.

WHAT:
    Holds strong references to one-shot asyncio tasks (session create, geo
    merge, heartbeat) until they finish, and logs anything they raise.

WHY:
    The visitor engine never awaits network effects before committing local
    cookie state. asyncio only keeps weak references to tasks, so unreferenced
    fire-and-forget tasks can be garbage collected mid-flight.

DESIGN:
    - spawn() must be called from inside a running event loop
    - Finished tasks are dropped from the set automatically
    - drain() waits for in-flight work with a grace period, then cancels the
      rest (the server equivalent of a page unload)
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTaskSet:
    """Registry of in-flight fire-and-forget tasks."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        """Schedule a coroutine without awaiting it."""
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
            # Tasks are expected to swallow their own network errors
            logger.error(f"[TASKS] Background task {task.get_name()} failed: {exc!r}")

    async def drain(self, timeout: float = 2.0) -> None:
        """Wait for in-flight tasks, cancelling whatever outlives the timeout."""
        if not self._tasks:
            return

        _, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.info(f"[TASKS] Abandoned {len(still_pending)} background task(s) on shutdown")
            await asyncio.gather(*still_pending, return_exceptions=True)
