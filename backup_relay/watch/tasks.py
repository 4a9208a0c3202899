"""
Tracked upload tasks for Backup Relay.

Every upload task is registered here so shutdown can wait for in-flight
uploads instead of abandoning them, and so at most ``max_concurrent``
transfers run at once.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class UploadTaskGroup:
    """
    A waitable, cancellable set of upload tasks.

    Also tracks which paths are claimed by a live task, so a cleanup pass
    can leave files that another task has not uploaded yet.
    """

    def __init__(self, max_concurrent: int):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task] = set()
        self._claims: dict[Path, int] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def claimed_paths(self) -> set[Path]:
        return set(self._claims)

    def claims_excluding(self, path: Path) -> frozenset:
        """
        Paths still claimed once one claim on ``path`` is released.

        A path spawned twice stays in the result until both tasks finish.
        """
        path = Path(path)
        return frozenset(p for p, count in self._claims.items() if count - (p == path) > 0)

    def spawn(self, path: Path, job: Callable[[Path], Awaitable]) -> asyncio.Task:
        """Start ``job(path)`` as a tracked task that claims ``path`` while it runs."""
        path = Path(path)
        self._claims[path] = self._claims.get(path, 0) + 1
        task = asyncio.create_task(job(path), name=f"upload:{path.name}")
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, path))
        return task

    def _on_done(self, task: asyncio.Task, path: Path):
        self._tasks.discard(task)
        remaining = self._claims.get(path, 0) - 1
        if remaining > 0:
            self._claims[path] = remaining
        else:
            self._claims.pop(path, None)

        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Upload task crashed | path={path} error={task.exception()!r}")

    async def drain(self, grace: Optional[float]) -> int:
        """
        Wait for running tasks, then cancel whatever is left.

        Args:
            grace: Seconds to wait before cancelling (None: wait indefinitely)

        Returns:
            Number of tasks that had to be cancelled
        """
        if not self._tasks:
            return 0

        pending = set(self._tasks)
        logger.info(f"Waiting for {len(pending)} upload task(s) to finish | grace={grace}")
        _, still_running = await asyncio.wait(pending, timeout=grace)

        if still_running:
            logger.warning(f"Cancelling {len(still_running)} upload task(s) after grace period")
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

        return len(still_running)
