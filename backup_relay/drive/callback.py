"""
Local OAuth callback listener for Backup Relay.

Each interactive authorization gets its own short-lived aiohttp server so
concurrent flows never share routes.
"""

import asyncio
import logging
from typing import Optional

from aiohttp import web

from ..constants import CALLBACK_HOST, CALLBACK_PATH, CALLBACK_PORT, CALLBACK_SHUTDOWN_TIMEOUT
from ..errors import AuthorizationDenied, AuthorizationError

logger = logging.getLogger(__name__)

SUCCESS_PAGE = "Authorization received! You can close this window."
MISSING_CODE_PAGE = "Error: authorization code not found in the URL."


class CallbackServer:
    """
    Receives the browser redirect carrying the authorization code.

    Usage:
        server = CallbackServer(port=8989, state=state)
        await server.start()
        try:
            code = await server.wait_for_code()
        finally:
            await server.close()
    """

    def __init__(
        self,
        host: str = CALLBACK_HOST,
        port: int = CALLBACK_PORT,
        path: str = CALLBACK_PATH,
        state: Optional[str] = None,
    ):
        self.host = host
        self.port = port
        self.path = path
        self.state = state
        self._runner: Optional[web.AppRunner] = None
        self._result: Optional[asyncio.Future] = None

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"

    async def start(self):
        """
        Bind the listener.

        Raises:
            AuthorizationError: If the port cannot be bound
        """
        self._result = asyncio.get_running_loop().create_future()

        app = web.Application()
        app.router.add_get(self.path, self._handle_callback)
        self._runner = web.AppRunner(app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            await self._runner.cleanup()
            self._runner = None
            raise AuthorizationError(f"Callback server failed on {self.host}:{self.port}: {e}") from e

        logger.info(f"OAuth callback server listening | url={self.redirect_uri}")

    async def wait_for_code(self) -> str:
        """
        Wait for the first callback request.

        Returns:
            The authorization code

        Raises:
            AuthorizationDenied: If the callback carried an error or no code
        """
        if self._result is None:
            raise RuntimeError("Callback server not started")
        return await asyncio.shield(self._result)

    async def close(self, timeout: float = CALLBACK_SHUTDOWN_TIMEOUT):
        """Shut the listener down, waiting at most ``timeout`` seconds."""
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        logger.debug("Shutting down OAuth callback server")
        try:
            await asyncio.wait_for(runner.cleanup(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"OAuth callback server did not stop within {timeout}s")
        else:
            logger.info("OAuth callback server stopped")
        if self._result is not None and not self._result.done():
            self._result.cancel()

    async def _handle_callback(self, request: web.Request) -> web.Response:
        query = request.query
        error = query.get("error")
        code = query.get("code")

        if self.state is not None and query.get("state") != self.state:
            logger.error("Callback received with mismatched state")
            self._resolve(exception=AuthorizationDenied("callback state does not match the authorization request"))
            return web.Response(status=400, text="Error: state mismatch.")

        if error:
            logger.error(f"Authorization denied in browser | error={error}")
            self._resolve(exception=AuthorizationDenied(f"authorization denied: {error}"))
            return web.Response(status=400, text=f"Error: {error}")

        if not code:
            logger.error("Callback received without authorization code")
            self._resolve(exception=AuthorizationDenied("callback without authorization code"))
            return web.Response(status=400, text=MISSING_CODE_PAGE)

        logger.info("Authorization code received via callback")
        self._resolve(code=code)
        return web.Response(text=SUCCESS_PAGE)

    def _resolve(self, code: Optional[str] = None, exception: Optional[Exception] = None):
        # Only the first callback decides the outcome
        if self._result is None or self._result.done():
            return
        if exception is not None:
            self._result.set_exception(exception)
        else:
            self._result.set_result(code)
