"""
Folder watching and upload task handling.
"""

from .base import Notifier, Uploader
from .events import EventKind, WatchEvent, events_from_watchdog, is_actionable, matches_suffix
from .handler import CleanupResult, UploadOutcome, UploadResult, UploadTaskHandler, clean_directory
from .tasks import UploadTaskGroup
from .watcher import FolderWatcher, WatcherState

__all__ = [
    "Notifier",
    "Uploader",
    "EventKind",
    "WatchEvent",
    "events_from_watchdog",
    "is_actionable",
    "matches_suffix",
    "CleanupResult",
    "UploadOutcome",
    "UploadResult",
    "UploadTaskHandler",
    "clean_directory",
    "UploadTaskGroup",
    "FolderWatcher",
    "WatcherState",
]
