"""
Application wiring for Backup Relay.

Builds the uploader for the configured destination, then runs the folder
watcher until SIGINT/SIGTERM sets the stop event.
"""

import asyncio
import logging
import signal
from contextlib import AsyncExitStack
from typing import Optional

from .archive import LocalArchiveUploader
from .config import DESTINATION_LOCAL, UploaderConfig
from .drive import DriveClient, DriveUploader, OAuthManager, RemoteFolderManager
from .errors import AuthorizationError, ConfigError, WatchError
from .notify import notifier_from_env
from .watch import FolderWatcher, Uploader

logger = logging.getLogger(__name__)


def install_signal_handlers(stop_event: asyncio.Event) -> list[signal.Signals]:
    """
    Set ``stop_event`` on SIGINT and SIGTERM.

    Returns:
        The signals that were hooked (platforms without loop signal support get none)
    """
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, stop_event, sig)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(sig)
    return installed


def _request_stop(stop_event: asyncio.Event, sig: signal.Signals):
    if not stop_event.is_set():
        logger.info(f"Received {sig.name}, shutting down")
    stop_event.set()


async def build_uploader(
    config: UploaderConfig,
    stack: AsyncExitStack,
    stop_event: asyncio.Event,
) -> Uploader:
    """
    Create the uploader for ``config.destination``.

    The Drive client is registered on ``stack`` so it is closed on exit.

    Raises:
        ConfigError: If the credentials file or folder setting is invalid
        AuthorizationError: If no OAuth token could be obtained
    """
    if config.destination == DESTINATION_LOCAL:
        logger.info(f"Archiving to local directory | archive_dir={config.archive_dir}")
        return LocalArchiveUploader(config.archive_dir, retention_days=config.retention_days)

    oauth = OAuthManager(
        config.credentials_file,
        config.token_file,
        callback_port=config.callback_port,
    )
    token_source = await oauth.get_client(stop_event)

    client = await stack.enter_async_context(DriveClient(auth_token=token_source.get_token))
    folders = RemoteFolderManager(
        client,
        root_folder_id=config.drive_folder_id,
        retention_days=config.retention_days,
    )
    return DriveUploader(client, folders, upload_timeout=config.upload_timeout or None)


async def run(config: UploaderConfig, stop_event: Optional[asyncio.Event] = None) -> int:
    """
    Run the uploader until stopped.

    Returns:
        Process exit code: 0 after a clean shutdown, 1 on a setup failure
    """
    stop_event = stop_event or asyncio.Event()
    install_signal_handlers(stop_event)

    async with AsyncExitStack() as stack:
        try:
            uploader = await build_uploader(config, stack, stop_event)
            watcher = FolderWatcher(
                uploader,
                config.watch_dir,
                suffix=config.suffix,
                settle_delay=config.settle_delay,
                max_concurrent_uploads=config.max_concurrent_uploads,
                shutdown_grace=config.shutdown_grace,
                notifier=notifier_from_env(),
            )
            await watcher.run(stop_event)
        except ConfigError as e:
            logger.error(f"Configuration error | error={e}")
            return 1
        except AuthorizationError as e:
            logger.error(f"Could not authorize Google Drive access | error={e}")
            return 1
        except WatchError as e:
            logger.error(f"Could not watch directory | dir={config.watch_dir} error={e}")
            return 1

    logger.info("Uploader stopped")
    return 0
