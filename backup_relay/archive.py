"""
Local archive destination for Backup Relay.

Mirrors the Drive layout on a local or mounted filesystem: one DD-MM-YYYY
folder per day, and the folder from ``retention_days`` ago is removed on
each upload.
"""

import asyncio
import logging
import shutil
from datetime import date, timedelta
from pathlib import Path
from typing import Callable

from .constants import DEFAULT_RETENTION_DAYS
from .drive.folders import date_name
from .errors import UploadError

logger = logging.getLogger(__name__)


class LocalArchiveUploader:
    """Copies backup artifacts into dated folders under ``archive_dir``."""

    def __init__(
        self,
        archive_dir: Path,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        today: Callable[[], date] = date.today,
    ):
        self.archive_dir = Path(archive_dir)
        self.retention_days = retention_days
        self._today = today

    def ensure_folder(self, name: str) -> Path:
        folder = self.archive_dir / name
        folder.mkdir(parents=True, exist_ok=True)
        return folder

    def delete_stale_folder(self) -> bool:
        """Remove the folder from ``retention_days`` ago. Returns True if one was removed."""
        stale = self.archive_dir / date_name(self._today() - timedelta(days=self.retention_days))
        if not stale.is_dir():
            logger.debug(f"No old archive folder to delete | folder={stale.name}")
            return False
        shutil.rmtree(stale)
        logger.info(f"Old archive folder deleted | folder={stale}")
        return True

    def _copy(self, path: Path) -> Path:
        name = date_name(self._today())
        try:
            folder = self.ensure_folder(name)
        except OSError as e:
            logger.error(f"Could not create archive folder | folder={name} error={e}")
            raise UploadError(f"Could not create archive folder {name}: {e}") from e

        try:
            self.delete_stale_folder()
        except OSError as e:
            logger.warning(f"Could not delete old archive folder, continuing | error={e}")

        try:
            return Path(shutil.copy2(path, folder / path.name))
        except OSError as e:
            logger.error(f"Archive copy failed | path={path} error={e}")
            raise UploadError(f"Archive copy of {path} failed: {e}") from e

    async def upload_file(self, path: Path):
        path = Path(path)
        target = await asyncio.to_thread(self._copy, path)
        logger.info(f"File archived | path={path} target={target}")
