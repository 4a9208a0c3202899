"""
Filesystem watch events for Backup Relay.

Converts watchdog events into WatchEvents. A rename into the watched
directory also yields a CREATE for the destination, so an artifact written
as ``x.tmp`` and renamed to ``x.zip`` is picked up like a new file.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
)


class EventKind(Enum):
    CREATE = "create"
    WRITE = "write"
    REMOVE = "remove"
    RENAME = "rename"
    OTHER = "other"


_KINDS = {
    EVENT_TYPE_CREATED: EventKind.CREATE,
    EVENT_TYPE_MODIFIED: EventKind.WRITE,
    EVENT_TYPE_DELETED: EventKind.REMOVE,
    EVENT_TYPE_MOVED: EventKind.RENAME,
}


@dataclass(frozen=True)
class WatchEvent:
    """One observed change in the watched directory."""
    path: Path
    kind: EventKind
    is_directory: bool = False


def _fspath(value) -> str:
    return value.decode() if isinstance(value, bytes) else value


def events_from_watchdog(event: FileSystemEvent, watch_dir: Optional[Path] = None) -> list[WatchEvent]:
    """
    Translate a watchdog event.

    Args:
        event: Event from the observer thread
        watch_dir: Watched directory; a move only counts as a create when its
            destination is directly inside it

    Returns:
        One WatchEvent, or two for a move (RENAME of the source, CREATE of the destination)
    """
    kind = _KINDS.get(event.event_type, EventKind.OTHER)
    events = [WatchEvent(Path(_fspath(event.src_path)), kind, event.is_directory)]

    if kind is EventKind.RENAME:
        dest = Path(_fspath(getattr(event, "dest_path", "") or ""))
        if dest.name and (watch_dir is None or dest.parent == Path(watch_dir)):
            events.append(WatchEvent(dest, EventKind.CREATE, event.is_directory))

    return events


def matches_suffix(path: Path, suffix: Optional[str]) -> bool:
    """True if no filter is set or the file name ends with ``suffix``."""
    if not suffix:
        return True
    return Path(path).name.endswith(suffix)


def is_actionable(event: WatchEvent, suffix: Optional[str]) -> bool:
    """Only file creations that pass the suffix filter start an upload."""
    return event.kind is EventKind.CREATE and not event.is_directory and matches_suffix(event.path, suffix)
