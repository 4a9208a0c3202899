"""
Dated backup folders on Google Drive.

Each upload day gets one folder named after the date (DD-MM-YYYY). The
folder from exactly ``retention_days`` ago is deleted on every upload.
"""

import logging
from datetime import date, timedelta
from typing import Callable, Optional

from ..constants import DATE_NAME_FORMAT, DEFAULT_RETENTION_DAYS, FOLDER_MIME_TYPE
from .client import DriveClient, quote_query_value

logger = logging.getLogger(__name__)


def date_name(day: date) -> str:
    """Folder name for a given day, e.g. 01-01-2024."""
    return day.strftime(DATE_NAME_FORMAT)


class RemoteFolderManager:
    """
    Finds, creates and expires dated folders.

    Folder creation is check-then-act without a lock: two uploads racing on
    the first upload of a day can both create the folder. Later lookups then
    use the first match, so the duplicate is harmless.
    """

    def __init__(
        self,
        client: DriveClient,
        root_folder_id: Optional[str] = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        today: Callable[[], date] = date.today,
    ):
        """
        Args:
            client: Open Drive client
            root_folder_id: Parent for the dated folders (None: My Drive root)
            retention_days: Age in days of the folder deleted on each upload
            today: Clock used to compute date names
        """
        self.client = client
        self.root_folder_id = root_folder_id
        self.retention_days = retention_days
        self._today = today

    def today_name(self) -> str:
        return date_name(self._today())

    def stale_name(self) -> str:
        return date_name(self._today() - timedelta(days=self.retention_days))

    def _folder_query(self, name: str) -> str:
        query = (
            f"name = {quote_query_value(name)} "
            f"and mimeType = {quote_query_value(FOLDER_MIME_TYPE)} "
            f"and trashed = false"
        )
        if self.root_folder_id:
            query += f" and {quote_query_value(self.root_folder_id)} in parents"
        return query

    async def find_folder(self, name: str) -> Optional[str]:
        """Return the id of the first folder named ``name``, or None."""
        files = await self.client.list_files(self._folder_query(name))
        if len(files) > 1:
            logger.info(f"Found {len(files)} folders with the same name, using the first | folder={name}")
        for f in files:
            if f.get("mimeType") == FOLDER_MIME_TYPE:
                return f["id"]
        return None

    async def ensure_folder(self, name: str) -> str:
        """
        Return the id of the folder named ``name``, creating it if missing.

        Raises:
            DriveApiError: If the lookup or the creation fails
        """
        logger.info(f"Checking backup folder | folder={name}")
        folder_id = await self.find_folder(name)
        if folder_id is not None:
            logger.info(f"Backup folder found | folder={name} id={folder_id}")
            return folder_id

        logger.info(f"No backup folder found, creating | folder={name}")
        metadata = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if self.root_folder_id:
            metadata["parents"] = [self.root_folder_id]
        created = await self.client.create_file(metadata)
        logger.info(f"Backup folder created | folder={name} id={created['id']}")
        return created["id"]

    async def delete_stale_folder(self) -> Optional[str]:
        """
        Delete the folder from ``retention_days`` ago, if there is one.

        Returns:
            Name of the deleted folder, or None if nothing matched

        Raises:
            DriveApiError: If the lookup or the deletion fails
        """
        name = self.stale_name()
        folder_id = await self.find_folder(name)
        if folder_id is None:
            logger.debug(f"No old backup folder to delete | folder={name}")
            return None

        await self.client.delete_file(folder_id)
        logger.info(f"Old backup folder deleted | folder={name} id={folder_id}")
        return name
