"""
Folder watcher for Backup Relay.

Observes the staging directory with watchdog and starts one upload task per
new artifact. The observer runs in its own thread; events are handed to the
asyncio loop with call_soon_threadsafe and consumed from a queue.
"""

import asyncio
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..constants import (
    DEFAULT_ARTIFACT_SUFFIX,
    DEFAULT_MAX_CONCURRENT_UPLOADS,
    DEFAULT_SETTLE_DELAY,
    DEFAULT_SHUTDOWN_GRACE,
)
from ..errors import WatchError
from ..logs import get_logger
from .base import Notifier, Uploader
from .events import WatchEvent, events_from_watchdog, is_actionable
from .handler import UploadResult, UploadTaskHandler
from .tasks import UploadTaskGroup

log = get_logger(__name__, component="FolderWatcher")

# How often the loop checks that the observer thread is still alive
OBSERVER_POLL_INTERVAL = 1.0

# Most recent upload results kept for inspection
RESULT_HISTORY = 100

_STOP = object()


class WatcherState(Enum):
    IDLE = "idle"
    WATCHING = "watching"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class _EventForwarder(FileSystemEventHandler):
    """Runs on the observer thread; pushes translated events onto the loop's queue."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue, watch_dir: Path):
        self.loop = loop
        self.queue = queue
        self.watch_dir = watch_dir

    def on_any_event(self, event: FileSystemEvent):
        # Errors are reported through the queue so the observer thread keeps dispatching
        try:
            items = events_from_watchdog(event, self.watch_dir)
        except Exception as e:
            items = [e]
        for item in items:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, item)


class FolderWatcher:
    """
    Watches one directory (non-recursive) and spawns upload tasks.

    Usage:
        watcher = FolderWatcher(uploader, Path("./backups"))
        await watcher.run(stop_event)
    """

    def __init__(
        self,
        uploader: Uploader,
        watch_dir: Path,
        suffix: Optional[str] = DEFAULT_ARTIFACT_SUFFIX,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        max_concurrent_uploads: int = DEFAULT_MAX_CONCURRENT_UPLOADS,
        shutdown_grace: Optional[float] = DEFAULT_SHUTDOWN_GRACE,
        notifier: Optional[Notifier] = None,
        observer_factory: Optional[Callable] = None,
    ):
        self.watch_dir = Path(watch_dir).absolute()
        self.suffix = suffix
        self.shutdown_grace = shutdown_grace
        self.observer_factory = observer_factory
        self.tasks = UploadTaskGroup(max_concurrent_uploads)
        self.handler = UploadTaskHandler(uploader, self.tasks, settle_delay, notifier)
        self.state = WatcherState.IDLE
        self.results: deque[UploadResult] = deque(maxlen=RESULT_HISTORY)

    def _start_observer(self, queue: asyncio.Queue):
        if not self.watch_dir.is_dir():
            raise WatchError(f"Watch directory does not exist: {self.watch_dir}")

        forwarder = _EventForwarder(asyncio.get_running_loop(), queue, self.watch_dir)
        observer = (self.observer_factory or Observer)()
        try:
            observer.schedule(forwarder, str(self.watch_dir), recursive=False)
            observer.start()
        except OSError as e:
            observer.stop()
            raise WatchError(f"Could not watch {self.watch_dir}: {e}") from e
        return observer

    async def _upload(self, path: Path, stop_event: asyncio.Event):
        result = await self.handler.run(path, stop_event)
        self.results.append(result)
        return result

    def _dispatch(self, event: WatchEvent, stop_event: asyncio.Event):
        if not is_actionable(event, self.suffix):
            log.debug("Ignoring event", extra={"kind": event.kind.value, "path": event.path})
            return
        log.info("New file detected", extra={"path": event.path})
        self.tasks.spawn(event.path, lambda p: self._upload(p, stop_event))

    async def _wait_for_stop(self, stop_event: asyncio.Event, queue: asyncio.Queue):
        await stop_event.wait()
        queue.put_nowait(_STOP)

    async def run(self, stop_event: asyncio.Event):
        """
        Watch until ``stop_event`` is set, then drain upload tasks.

        Raises:
            WatchError: If the directory cannot be watched
        """
        if self.state is not WatcherState.IDLE:
            raise WatchError(f"Watcher already used (state={self.state.value})")

        queue: asyncio.Queue = asyncio.Queue()
        observer = self._start_observer(queue)
        stopper = asyncio.create_task(self._wait_for_stop(stop_event, queue))
        self.state = WatcherState.WATCHING
        log.info("Watching directory", extra={"dir": self.watch_dir, "suffix": self.suffix or "*"})

        try:
            while True:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=OBSERVER_POLL_INTERVAL)
                except asyncio.TimeoutError:
                    if not observer.is_alive():
                        log.error("Watcher thread stopped unexpectedly", extra={"dir": self.watch_dir})
                        break
                    continue

                if item is _STOP:
                    break
                if isinstance(item, Exception):
                    log.error("Watch error", extra={"error": repr(item)})
                    continue
                self._dispatch(item, stop_event)
        finally:
            self.state = WatcherState.SHUTTING_DOWN
            log.info("Stopping watcher")
            stopper.cancel()
            observer.stop()
            await asyncio.to_thread(observer.join)

            cancelled = await self.tasks.drain(self.shutdown_grace)
            self.state = WatcherState.STOPPED
            log.info("Watcher stopped", extra={"cancelled_uploads": cancelled})
