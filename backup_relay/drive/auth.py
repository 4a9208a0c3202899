"""
OAuth authentication manager for Backup Relay.

Handles the Google OAuth 2.0 flow for Drive uploads: reuse a saved token when
one exists, otherwise authorize interactively through the browser with a
local callback listener.
"""

import asyncio
import json
import logging
import secrets
from datetime import timezone
from pathlib import Path
from typing import Awaitable, Optional, TypeVar

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from ..constants import CALLBACK_HOST, CALLBACK_PORT, DRIVE_SCOPES
from ..errors import AuthorizationCancelled, AuthorizationError, ConfigError
from .callback import CallbackServer
from .tokens import Token, TokenStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


def load_client_config(path: Path) -> dict:
    """
    Read a Google OAuth client secrets file (credentials.json).

    Returns:
        The parsed config, with an "installed" or "web" section

    Raises:
        ConfigError: If the file is missing, not JSON, or has no client id
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Credentials file not found: {path}") from e
    except (OSError, ValueError) as e:
        raise ConfigError(f"Could not parse credentials file {path}: {e}") from e

    section = _client_section(data) if isinstance(data, dict) else None
    if not section or not section.get("client_id"):
        raise ConfigError(f"Credentials file {path} has no 'installed' or 'web' client configuration")
    return data


def _client_section(client_config: dict) -> Optional[dict]:
    return client_config.get("installed") or client_config.get("web")


def token_from_credentials(creds: Credentials) -> Token:
    """Convert google-auth credentials to a persistable Token."""
    expiry = creds.expiry
    if expiry is not None and expiry.tzinfo is None:
        # google-auth keeps expiry as naive UTC
        expiry = expiry.replace(tzinfo=timezone.utc)
    return Token(
        access_token=creds.token or "",
        refresh_token=creds.refresh_token or "",
        expiry=expiry,
        token_type="Bearer",
    )


class TokenSource:
    """
    Hands out valid access tokens, refreshing transparently.

    Refreshes are serialized so concurrent uploads trigger a single round
    trip; refreshed tokens are written back to the token store best-effort.
    """

    def __init__(self, credentials: Credentials, store: Optional[TokenStore] = None):
        self.credentials = credentials
        self.store = store
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """
        Get a valid access token.

        Raises:
            AuthorizationError: If the token is expired and cannot be refreshed
        """
        async with self._lock:
            if not self.credentials.valid:
                await self._refresh()
            return self.credentials.token

    async def _refresh(self):
        if not self.credentials.refresh_token:
            raise AuthorizationError("Access token expired and no refresh token is available")

        logger.info("Refreshing OAuth access token")
        try:
            await asyncio.to_thread(self.credentials.refresh, Request())
        except (google.auth.exceptions.RefreshError, google.auth.exceptions.TransportError) as e:
            logger.error(f"Token refresh failed | error={e}")
            raise AuthorizationError(f"Token refresh failed: {e}") from e

        if self.store is not None:
            try:
                self.store.save(token_from_credentials(self.credentials))
            except OSError as e:
                logger.warning(f"Could not save refreshed token | path={self.store.path} error={e}")


class OAuthManager:
    """
    Manages OAuth 2.0 authentication for Google Drive.

    Example:
        manager = OAuthManager(Path("credentials.json"), Path("token.json"))
        token_source = await manager.get_client(stop_event)
        client = DriveClient(auth_token=token_source.get_token)
    """

    def __init__(
        self,
        credentials_path: Path,
        token_path: Path,
        scopes: Optional[list[str]] = None,
        callback_host: str = CALLBACK_HOST,
        callback_port: int = CALLBACK_PORT,
    ):
        """
        Initialize OAuth manager.

        Args:
            credentials_path: Path to OAuth client credentials JSON
            token_path: Path to save/load token
            scopes: OAuth scopes to request (default: full Drive access)
            callback_host: Host the local callback listener binds to
            callback_port: Port the local callback listener binds to

        Raises:
            ConfigError: If the credentials file is missing or invalid
        """
        self.credentials_path = Path(credentials_path)
        self.token_store = TokenStore(token_path)
        self.scopes = scopes or list(DRIVE_SCOPES)
        self.callback_host = callback_host
        self.callback_port = callback_port
        self.client_config = load_client_config(self.credentials_path)

    async def get_client(self, stop_event: Optional[asyncio.Event] = None) -> TokenSource:
        """
        Get an authenticated token source, authorizing interactively if needed.

        Args:
            stop_event: Shutdown signal; aborts the interactive wait when set

        Returns:
            TokenSource for authenticating Drive requests

        Raises:
            AuthorizationError: If interactive authorization fails
            AuthorizationDenied: If the user denied access
            AuthorizationCancelled: If shutdown was requested while waiting
        """
        token = self.token_store.load()
        if token is not None:
            logger.info(f"Token loaded from file | token_file={self.token_store.path}")
            return TokenSource(self.credentials_from_token(token), self.token_store)

        logger.info(f"No usable token, starting browser authorization | token_file={self.token_store.path}")
        creds = await self.authorize_interactively(stop_event)

        try:
            self.token_store.save(token_from_credentials(creds))
        except OSError as e:
            # The in-memory token still works for this process
            logger.warning(f"Could not save new token | path={self.token_store.path} error={e}")

        return TokenSource(creds, self.token_store)

    def credentials_from_token(self, token: Token) -> Credentials:
        """Build google-auth credentials from a stored token (no network call)."""
        section = _client_section(self.client_config)
        expiry = token.expiry.astimezone(timezone.utc).replace(tzinfo=None) if token.expiry else None
        return Credentials(
            token=token.access_token or None,
            refresh_token=token.refresh_token or None,
            token_uri=section.get("token_uri", DEFAULT_TOKEN_URI),
            client_id=section.get("client_id"),
            client_secret=section.get("client_secret"),
            scopes=self.scopes,
            expiry=expiry,
        )

    async def authorize_interactively(self, stop_event: Optional[asyncio.Event] = None) -> Credentials:
        """
        Run the browser authorization flow.

        Binds the callback listener, prints the authorization URL, waits for
        the redirect and exchanges the code for a token. The listener is
        always shut down before returning.
        """
        state = secrets.token_urlsafe(16)
        server = CallbackServer(host=self.callback_host, port=self.callback_port, state=state)
        flow = Flow.from_client_config(self.client_config, scopes=self.scopes, redirect_uri=server.redirect_uri)
        auth_url, _ = flow.authorization_url(access_type="offline", prompt="consent", state=state)

        await server.start()
        try:
            print(f"Open this link in your browser to authorize the application:\n{auth_url}")
            logger.info(f"Waiting for browser authorization | url={auth_url}")

            code = await self._race(server.wait_for_code(), stop_event)

            logger.info("Exchanging authorization code for token")
            try:
                await self._race(asyncio.to_thread(flow.fetch_token, code=code), stop_event)
            except AuthorizationCancelled:
                raise
            except Exception as e:
                logger.error(f"Code exchange failed | error={e}")
                raise AuthorizationError(f"Code exchange failed: {e}") from e
        finally:
            await server.close()

        logger.info("OAuth token obtained")
        return flow.credentials

    @staticmethod
    async def _race(awaitable: Awaitable[T], stop_event: Optional[asyncio.Event]) -> T:
        """Await ``awaitable`` unless ``stop_event`` fires first."""
        task = asyncio.ensure_future(awaitable)
        if stop_event is None:
            return await task

        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            done, _ = await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()
        logger.warning("Authorization cancelled by shutdown")
        raise AuthorizationCancelled("Shutdown requested while waiting for authorization")
