"""
Upload task handler for Backup Relay.

One task runs per new artifact: wait for the producer to finish writing,
upload, then empty the staging directory so the next backup starts clean.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ..constants import DEFAULT_SETTLE_DELAY
from ..errors import NotificationError
from ..logs import get_logger
from .base import Notifier, Uploader
from .tasks import UploadTaskGroup

log = get_logger(__name__, component="UploadTaskHandler")


class UploadOutcome(Enum):
    UPLOADED = "uploaded"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class CleanupResult:
    """Tally of one directory cleanup pass."""
    deleted: int = 0
    failed: int = 0
    skipped: int = 0
    aborted: bool = False


@dataclass
class UploadResult:
    path: Path
    outcome: UploadOutcome
    error: Optional[BaseException] = None
    cleanup: CleanupResult = field(default_factory=CleanupResult)


def clean_directory(directory: Path, keep: frozenset = frozenset()) -> CleanupResult:
    """
    Delete every regular file directly inside ``directory``.

    Subdirectories are left alone. Files in ``keep`` are skipped.
    A failure to list the directory aborts the pass; a failure to delete
    one entry is logged and counted.

    Returns:
        CleanupResult with deleted/failed/skipped counts
    """
    result = CleanupResult()
    try:
        entries = list(Path(directory).iterdir())
    except OSError as e:
        log.error("Could not list directory for cleanup", extra={"dir": directory, "error": e})
        result.aborted = True
        return result

    for entry in entries:
        if entry.is_dir():
            continue
        if entry in keep:
            log.debug("Skipping file claimed by another upload", extra={"path": entry})
            result.skipped += 1
            continue
        try:
            entry.unlink()
            result.deleted += 1
            log.debug("Deleted file", extra={"path": entry})
        except OSError as e:
            result.failed += 1
            log.error("Could not delete file", extra={"path": entry, "error": e})

    return result


class UploadTaskHandler:
    """
    Runs the settle, upload, notify and cleanup steps for one file.

    The stop event is the shared cancellation scope: once it is set, tasks
    that have not started transferring give up without uploading.
    """

    def __init__(
        self,
        uploader: Uploader,
        tasks: UploadTaskGroup,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        notifier: Optional[Notifier] = None,
    ):
        self.uploader = uploader
        self.tasks = tasks
        self.settle_delay = settle_delay
        self.notifier = notifier
        self._dir_locks: dict[Path, asyncio.Lock] = {}

    async def _settle(self, stop_event: asyncio.Event):
        """Sleep for the settle delay, returning early if stop is set."""
        if self.settle_delay <= 0:
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.settle_delay)
        except asyncio.TimeoutError:
            pass

    async def run(self, path: Path, stop_event: asyncio.Event) -> UploadResult:
        path = Path(path)
        task_log = log.bind(path=path)

        await self._settle(stop_event)
        if stop_event.is_set():
            task_log.warning("Shutdown requested before upload started, skipping")
            return UploadResult(path, UploadOutcome.CANCELLED)

        async with self.tasks.semaphore:
            if stop_event.is_set():
                task_log.warning("Shutdown requested while waiting for an upload slot, skipping")
                return UploadResult(path, UploadOutcome.CANCELLED)

            task_log.info("Uploading file")
            try:
                await self.uploader.upload_file(path)
            except asyncio.CancelledError:
                task_log.warning("Upload cancelled")
                raise
            except Exception as e:
                task_log.error("Upload failed", extra={"error": e})
                await self._notify(path, e)
                return UploadResult(path, UploadOutcome.FAILED, error=e)

        task_log.info("Upload finished, cleaning directory")
        cleanup = await self.cleanup(path)
        return UploadResult(path, UploadOutcome.UPLOADED, cleanup=cleanup)

    async def _notify(self, path: Path, error: BaseException):
        if self.notifier is None:
            return
        try:
            await self.notifier.notify_failure(path, error)
        except NotificationError as e:
            log.warning("Could not send failure notification", extra={"path": path, "error": e})

    async def cleanup(self, path: Path) -> CleanupResult:
        """Empty the directory holding ``path``, leaving files other tasks still own."""
        directory = path.parent
        lock = self._dir_locks.setdefault(directory, asyncio.Lock())
        async with lock:
            keep = self.tasks.claims_excluding(path)
            result = await asyncio.to_thread(clean_directory, directory, keep)

        summary = {"dir": directory, "deleted": result.deleted, "failed": result.failed, "skipped": result.skipped}
        if result.aborted:
            log.error("Directory cleanup aborted", extra=summary)
        else:
            log.info("Directory cleanup finished", extra=summary)
        return result
