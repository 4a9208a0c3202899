"""
Google Drive uploader for Backup Relay.

Implements the watcher's Uploader protocol: each file goes into today's
dated folder, and the expired folder is removed on the way.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

import aiohttp

from ..errors import AuthorizationError, DriveApiError, UploadError, UploadTimeoutError
from ..formatting import format_duration, format_size, format_speed
from .client import DriveClient
from .folders import RemoteFolderManager

logger = logging.getLogger(__name__)

# Failures of a folder lookup/create/delete round trip
REMOTE_ERRORS = (DriveApiError, AuthorizationError, aiohttp.ClientError, asyncio.TimeoutError)


class DriveUploader:
    """Uploads backup artifacts into dated Drive folders."""

    def __init__(
        self,
        client: DriveClient,
        folders: RemoteFolderManager,
        upload_timeout: Optional[float] = None,
    ):
        """
        Args:
            client: Open Drive client
            folders: Dated folder manager sharing the same client
            upload_timeout: Deadline in seconds for one transfer (None: no deadline)
        """
        self.client = client
        self.folders = folders
        self.upload_timeout = upload_timeout

    async def upload_file(self, path: Path):
        """
        Upload a file into today's backup folder.

        Raises:
            UploadError: If the folder cannot be resolved, the file cannot be
                read, or Drive rejects the transfer
            UploadTimeoutError: If the transfer deadline expired
            asyncio.CancelledError: If the upload task was cancelled
        """
        path = Path(path)
        folder_name = self.folders.today_name()

        try:
            folder_id = await self.folders.ensure_folder(folder_name)
        except REMOTE_ERRORS as e:
            logger.error(f"Could not resolve backup folder | folder={folder_name} error={e}")
            raise UploadError(f"Could not resolve backup folder {folder_name}: {e}") from e

        try:
            await self.folders.delete_stale_folder()
        except REMOTE_ERRORS as e:
            logger.warning(f"Could not delete old backup folder, continuing with upload | error={e}")

        try:
            size = path.stat().st_size
        except OSError as e:
            logger.error(f"Could not open local file for upload | path={path} error={e}")
            raise UploadError(f"Could not open {path}: {e}") from e

        logger.debug(f"Starting upload | path={path} size={format_size(size)} folder={folder_name}")
        start = time.monotonic()

        try:
            transfer = self.client.upload_file(path, parents=[folder_id])
            if self.upload_timeout:
                created = await asyncio.wait_for(transfer, timeout=self.upload_timeout)
            else:
                created = await transfer
        except asyncio.CancelledError:
            logger.warning(f"Upload cancelled | path={path}")
            raise
        except asyncio.TimeoutError as e:
            logger.warning(f"Upload timed out | path={path}")
            raise UploadTimeoutError(f"Upload of {path} timed out") from e
        except (OSError, DriveApiError, AuthorizationError, aiohttp.ClientError) as e:
            logger.error(f"Upload to Google Drive failed | path={path} error={e}")
            raise UploadError(f"Upload of {path} failed: {e}") from e

        elapsed = time.monotonic() - start
        logger.info(
            f"File uploaded to Google Drive | path={path} id={created.get('id')} "
            f"duration={format_duration(elapsed)} speed={format_speed(size, elapsed)}"
        )
