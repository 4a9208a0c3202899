"""
Tests for OAuth handling.

Covers the client secrets loader, the local callback listener, token reuse
and refresh, and cancellation of the interactive flow.
"""

import asyncio
import json
import socket
import tempfile
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import aiohttp
import google.auth.exceptions
import pytest

from backup_relay.drive.auth import OAuthManager, TokenSource, load_client_config
from backup_relay.drive.callback import SUCCESS_PAGE, CallbackServer
from backup_relay.drive.tokens import Token, TokenStore
from backup_relay.errors import (
    AuthorizationCancelled,
    AuthorizationDenied,
    AuthorizationError,
    ConfigError,
)

CLIENT_CONFIG = {
    "installed": {
        "client_id": "1234.apps.googleusercontent.com",
        "client_secret": "secret",
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
        "redirect_uris": ["http://localhost"],
    }
}


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def credentials_file(temp_dir):
    path = temp_dir / "credentials.json"
    path.write_text(json.dumps(CLIENT_CONFIG))
    return path


class TestLoadClientConfig:
    """Tests for load_client_config()."""

    def test_installed_app(self, credentials_file):
        assert load_client_config(credentials_file) == CLIENT_CONFIG

    def test_web_app(self, temp_dir):
        path = temp_dir / "credentials.json"
        path.write_text(json.dumps({"web": CLIENT_CONFIG["installed"]}))
        assert "web" in load_client_config(path)

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigError, match="not found"):
            load_client_config(temp_dir / "credentials.json")

    def test_not_json(self, temp_dir):
        path = temp_dir / "credentials.json"
        path.write_text("{")
        with pytest.raises(ConfigError):
            load_client_config(path)

    def test_no_client_section(self, temp_dir):
        path = temp_dir / "credentials.json"
        path.write_text(json.dumps({"type": "service_account"}))
        with pytest.raises(ConfigError):
            load_client_config(path)


class TestCallbackServer:
    """Tests for the local OAuth callback listener."""

    def _exchange(self, query: dict, state="expected-state"):
        """Start a server, hit it once with ``query``, return (status, text, outcome)."""
        async def scenario():
            server = CallbackServer(host="127.0.0.1", port=free_port(), state=state)
            await server.start()
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.get(server.redirect_uri, params=query) as response:
                        status, text = response.status, await response.text()
                try:
                    outcome = await server.wait_for_code()
                except AuthorizationDenied as e:
                    outcome = e
            finally:
                await server.close()
            return status, text, outcome
        return asyncio.run(scenario())

    def test_code_received(self):
        status, text, outcome = self._exchange({"code": "4/abc", "state": "expected-state"})
        assert status == 200
        assert text == SUCCESS_PAGE
        assert outcome == "4/abc"

    def test_missing_code(self):
        status, _, outcome = self._exchange({"state": "expected-state"})
        assert status == 400
        assert isinstance(outcome, AuthorizationDenied)

    def test_error_param(self):
        status, text, outcome = self._exchange({"error": "access_denied", "state": "expected-state"})
        assert status == 400
        assert "access_denied" in text
        assert isinstance(outcome, AuthorizationDenied)

    def test_state_mismatch(self):
        status, _, outcome = self._exchange({"code": "4/abc", "state": "forged"})
        assert status == 400
        assert isinstance(outcome, AuthorizationDenied)

    def test_redirect_uri(self):
        server = CallbackServer(host="localhost", port=8989)
        assert server.redirect_uri == "http://localhost:8989/callback"

    def test_port_in_use(self):
        async def scenario():
            with socket.socket() as blocker:
                blocker.bind(("127.0.0.1", 0))
                blocker.listen()
                server = CallbackServer(host="127.0.0.1", port=blocker.getsockname()[1])
                await server.start()

        with pytest.raises(AuthorizationError):
            asyncio.run(scenario())

    def test_close_releases_port(self):
        port = free_port()

        async def scenario():
            for _ in range(2):
                server = CallbackServer(host="127.0.0.1", port=port)
                await server.start()
                await server.close()

        asyncio.run(scenario())


class TestOAuthManager:
    """Tests for OAuthManager."""

    def test_missing_credentials_is_config_error(self, temp_dir):
        with pytest.raises(ConfigError):
            OAuthManager(temp_dir / "credentials.json", temp_dir / "token.json")

    def test_saved_token_is_reused(self, credentials_file, temp_dir):
        token_path = temp_dir / "token.json"
        expiry = datetime.now(timezone.utc) + timedelta(hours=1)
        TokenStore(token_path).save(Token(access_token="ya29.saved", refresh_token="1//r", expiry=expiry))

        manager = OAuthManager(credentials_file, token_path)
        with patch.object(manager, "authorize_interactively") as interactive:
            source = asyncio.run(manager.get_client())

        interactive.assert_not_called()
        assert asyncio.run(source.get_token()) == "ya29.saved"

    def test_credentials_from_token(self, credentials_file, temp_dir):
        manager = OAuthManager(credentials_file, temp_dir / "token.json")
        expiry = datetime(2030, 1, 1, 12, tzinfo=timezone.utc)

        creds = manager.credentials_from_token(Token(access_token="a", refresh_token="r", expiry=expiry))

        assert creds.token == "a"
        assert creds.refresh_token == "r"
        assert creds.client_id == CLIENT_CONFIG["installed"]["client_id"]
        assert creds.token_uri == "https://oauth2.googleapis.com/token"
        assert creds.expiry == datetime(2030, 1, 1, 12)

    def test_interactive_flow_saves_token(self, credentials_file, temp_dir):
        token_path = temp_dir / "token.json"
        manager = OAuthManager(credentials_file, token_path)

        creds = MagicMock()
        creds.token = "ya29.new"
        creds.refresh_token = "1//new"
        creds.expiry = datetime(2030, 1, 1)

        async def fake_authorize(stop_event):
            return creds

        with patch.object(manager, "authorize_interactively", side_effect=fake_authorize):
            asyncio.run(manager.get_client())

        saved = TokenStore(token_path).load()
        assert saved.access_token == "ya29.new"
        assert saved.expiry == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_interactive_flow_cancelled_by_stop(self, credentials_file, temp_dir):
        manager = OAuthManager(
            credentials_file,
            temp_dir / "token.json",
            callback_host="127.0.0.1",
            callback_port=free_port(),
        )

        async def scenario():
            stop_event = asyncio.Event()
            asyncio.get_running_loop().call_later(0.1, stop_event.set)
            await manager.get_client(stop_event)

        with pytest.raises(AuthorizationCancelled):
            asyncio.run(scenario())

    def test_interactive_flow_exchanges_code(self, credentials_file, temp_dir):
        port = free_port()
        manager = OAuthManager(
            credentials_file,
            temp_dir / "token.json",
            callback_host="127.0.0.1",
            callback_port=port,
        )

        def fake_fetch_token(self, code):
            assert code == "4/code"
            self.oauth2session.token = {
                "access_token": "ya29.x",
                "refresh_token": "1//x",
                "token_type": "Bearer",
                "expires_in": 3600,
                "expires_at": time.time() + 3600,
            }
            return self.oauth2session.token

        async def scenario():
            with patch("google_auth_oauthlib.flow.Flow.fetch_token", fake_fetch_token), \
                    patch("builtins.print") as fake_print:
                auth = asyncio.create_task(manager.authorize_interactively(asyncio.Event()))
                while not fake_print.called and not auth.done():
                    await asyncio.sleep(0.01)
                auth_url = fake_print.call_args[0][0].splitlines()[-1]
                state = dict(p.split("=", 1) for p in auth_url.split("?", 1)[1].split("&"))["state"]

                async with aiohttp.ClientSession() as session:
                    callback = f"http://127.0.0.1:{port}/callback"
                    async with session.get(callback, params={"code": "4/code", "state": state}) as response:
                        assert response.status == 200
                return await auth

        creds = asyncio.run(scenario())
        assert creds.token == "ya29.x"
        assert creds.refresh_token == "1//x"


class TestTokenSource:
    """Tests for TokenSource refresh handling."""

    def test_valid_token_returned_without_refresh(self):
        creds = MagicMock(valid=True, token="ya29.ok")
        assert asyncio.run(TokenSource(creds).get_token()) == "ya29.ok"
        creds.refresh.assert_not_called()

    def test_expired_token_is_refreshed_and_saved(self, temp_dir):
        creds = MagicMock(valid=False, token="old", refresh_token="1//r", expiry=None)

        def refresh(request):
            creds.token = "ya29.fresh"
            creds.valid = True

        creds.refresh.side_effect = refresh
        store = TokenStore(temp_dir / "token.json")

        token = asyncio.run(TokenSource(creds, store).get_token())

        assert token == "ya29.fresh"
        assert store.load().access_token == "ya29.fresh"

    def test_concurrent_callers_refresh_once(self):
        creds = MagicMock(valid=False, token="old", refresh_token="1//r", expiry=None)

        def refresh(request):
            creds.token = "ya29.fresh"
            creds.valid = True

        creds.refresh.side_effect = refresh
        source = TokenSource(creds)

        async def scenario():
            return await asyncio.gather(*(source.get_token() for _ in range(5)))

        assert asyncio.run(scenario()) == ["ya29.fresh"] * 5
        assert creds.refresh.call_count == 1

    def test_no_refresh_token(self):
        creds = MagicMock(valid=False, refresh_token=None)
        with pytest.raises(AuthorizationError):
            asyncio.run(TokenSource(creds).get_token())

    def test_refresh_failure(self):
        creds = MagicMock(valid=False, refresh_token="1//r")
        creds.refresh.side_effect = google.auth.exceptions.RefreshError("invalid_grant")
        with pytest.raises(AuthorizationError, match="invalid_grant"):
            asyncio.run(TokenSource(creds).get_token())

    def test_save_failure_is_not_fatal(self, temp_dir):
        creds = MagicMock(valid=False, token="old", refresh_token="1//r", expiry=None)

        def refresh(request):
            creds.token = "ya29.fresh"
            creds.valid = True

        creds.refresh.side_effect = refresh
        store = TokenStore(temp_dir / "missing-dir" / "token.json")

        assert asyncio.run(TokenSource(creds, store).get_token()) == "ya29.fresh"
