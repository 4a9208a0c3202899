"""
Interfaces the watcher depends on.

The watcher only knows these protocols, so destinations (Google Drive, a
local archive) and notification channels can be swapped without touching
watch logic.
"""

from pathlib import Path
from typing import Protocol


class Uploader(Protocol):
    """Delivers one local file to a destination."""

    async def upload_file(self, path: Path) -> None:
        """
        Upload ``path``.

        Raises:
            UploadError: If the upload failed
            asyncio.CancelledError: If the task was cancelled mid-transfer
        """
        ...


class Notifier(Protocol):
    """Tells an operator that an upload failed."""

    async def notify_failure(self, path: Path, error: BaseException) -> None:
        ...
