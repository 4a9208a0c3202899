"""
Google Drive API client for Backup Relay.

Handles all HTTP interactions with the Google Drive v3 REST API using
asyncio + aiohttp, so in-flight requests are cancelled with their task.
"""

import asyncio
import inspect
import json
import logging
import os
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import aiohttp
import certifi

from ..errors import DriveApiError

logger = logging.getLogger(__name__)

AuthToken = Union[str, Callable[[], Union[str, Awaitable[str]]]]


def quote_query_value(value: str) -> str:
    """Quote a string literal for a Drive ``q`` search expression."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


@dataclass
class DriveClientConfig:
    """Configuration for DriveClient."""
    api_base: str = "https://www.googleapis.com/drive/v3"
    upload_base: str = "https://www.googleapis.com/upload/drive/v3"
    connect_timeout: int = 10
    read_timeout: int = 120
    max_retries: int = 3


class DriveClient:
    """
    Google Drive API client.

    Handles listing, creating and deleting entries and streaming uploads.
    Use as an async context manager so the HTTP session is closed:

        async with DriveClient(auth_token=token_source.get_token) as client:
            folders = await client.list_files("name = '01-01-2024'")
    """

    # Statuses worth retrying for idempotent requests
    RETRYABLE_STATUSES = {429, 500, 502, 503, 504}

    def __init__(self, auth_token: AuthToken, config: Optional[DriveClientConfig] = None):
        """
        Initialize the Drive client.

        Args:
            auth_token: Access token, or a (sync or async) callable returning one
            config: Client configuration
        """
        self.config = config or DriveClientConfig()
        self._auth_token = auth_token
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "DriveClient":
        await self.open()
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def open(self):
        if self._session is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=ssl_context),
                timeout=aiohttp.ClientTimeout(
                    sock_connect=self.config.connect_timeout,
                    sock_read=self.config.read_timeout,
                ),
            )

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _get_auth_token(self) -> str:
        """Get current auth token, calling getter if it's a callable."""
        if callable(self._auth_token):
            token = self._auth_token()
            if inspect.isawaitable(token):
                token = await token
            return token
        return self._auth_token

    async def _get_headers(self, **extra: str) -> dict:
        return {"Authorization": f"Bearer {await self._get_auth_token()}", **extra}

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("DriveClient is not open; use 'async with DriveClient(...)'")
        return self._session

    @staticmethod
    async def _raise_for_status(response: aiohttp.ClientResponse):
        if response.status < 400:
            return
        raw = await response.text()
        try:
            detail = json.loads(raw).get("error", {}).get("message") or response.reason
        except (ValueError, AttributeError):
            detail = raw.strip() or response.reason
        raise DriveApiError(response.status, detail)

    async def _request(self, method: str, url: str, retry: bool = False, **kwargs) -> Optional[dict]:
        """
        Make an API request and decode the JSON body.

        Idempotent calls pass ``retry=True`` to retry timeouts and transient
        statuses with exponential backoff.
        """
        session = self._require_session()
        attempts = self.config.max_retries if retry else 1

        for attempt in range(attempts):
            try:
                headers = await self._get_headers()
                async with session.request(method, url, headers=headers, **kwargs) as response:
                    await self._raise_for_status(response)
                    if response.status == 204:
                        return None
                    body = await response.read()
                    return json.loads(body) if body else None
            except DriveApiError as e:
                if attempt < attempts - 1 and e.status_code in self.RETRYABLE_STATUSES:
                    logger.warning(f"Drive API {method} returned {e.status_code}, retrying | attempt={attempt + 1}")
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise
            except asyncio.TimeoutError:
                if attempt < attempts - 1:
                    logger.warning(f"Drive API {method} timed out, retrying | attempt={attempt + 1}")
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise

        raise RuntimeError(f"Request failed after {attempts} attempts")

    # ============================================================================
    # Metadata operations
    # ============================================================================

    async def list_files(self, query: str, fields: str = "files(id, name, mimeType)") -> list[dict]:
        """
        List entries matching a Drive search query.

        Handles pagination.

        Args:
            query: Drive ``q`` expression
            fields: Partial response selector for each page

        Returns:
            List of file/folder metadata dicts
        """
        all_items = []
        page_token = None

        while True:
            params = {
                "q": query,
                "fields": f"nextPageToken, {fields}",
                "pageSize": "1000",
                "spaces": "drive",
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._request("GET", f"{self.config.api_base}/files", retry=True, params=params) or {}
            all_items.extend(data.get("files", []))
            page_token = data.get("nextPageToken")

            if not page_token:
                break

        return all_items

    async def create_file(self, metadata: dict, fields: str = "id, name, mimeType") -> dict:
        """Create a metadata-only entry (e.g. a folder). Not retried."""
        return await self._request(
            "POST", f"{self.config.api_base}/files",
            params={"fields": fields},
            json=metadata,
        )

    async def delete_file(self, file_id: str):
        """Permanently delete an entry by id."""
        await self._request("DELETE", f"{self.config.api_base}/files/{file_id}", retry=True)

    # ============================================================================
    # Uploads
    # ============================================================================

    async def upload_file(
        self,
        path: Path,
        name: Optional[str] = None,
        parents: Optional[list[str]] = None,
        mime_type: str = "application/octet-stream",
    ) -> dict:
        """
        Upload a local file as a new Drive entry using a resumable session.

        The file body is streamed from disk, never loaded into memory.

        Args:
            path: Local file to upload
            name: Remote name (default: the file's base name)
            parents: Parent folder ids
            mime_type: Content type of the upload

        Returns:
            Metadata of the created entry

        Raises:
            OSError: If the local file cannot be opened
            DriveApiError: If Drive rejects the upload
        """
        session = self._require_session()
        path = Path(path)
        metadata = {"name": name or path.name}
        if parents:
            metadata["parents"] = parents

        with open(path, "rb") as f:
            size = os.fstat(f.fileno()).st_size

            headers = await self._get_headers(**{
                "X-Upload-Content-Type": mime_type,
                "X-Upload-Content-Length": str(size),
            })
            async with session.post(
                f"{self.config.upload_base}/files",
                params={"uploadType": "resumable", "fields": "id, name, size"},
                headers=headers,
                json=metadata,
            ) as response:
                await self._raise_for_status(response)
                session_url = response.headers.get("Location")

            if not session_url:
                raise DriveApiError(response.status, "resumable upload session has no Location header")

            headers = await self._get_headers(**{"Content-Type": mime_type})
            async with session.put(session_url, headers=headers, data=f) as response:
                await self._raise_for_status(response)
                body = await response.read()
                return json.loads(body) if body else {}
