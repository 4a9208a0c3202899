"""
Tests for the Drive REST client.

Runs against the in-process fake Drive in fake_drive.py.
"""

import asyncio
import ssl
import tempfile
from pathlib import Path
from unittest.mock import patch

import certifi
import pytest

from backup_relay.drive.client import DriveClient, quote_query_value
from backup_relay.errors import DriveApiError

from fake_drive import FakeDrive, drive_client


def run(coro):
    return asyncio.run(coro)


class TestQuoteQueryValue:
    """Tests for quote_query_value()."""

    def test_plain_value(self):
        assert quote_query_value("01-01-2024") == "'01-01-2024'"

    def test_escapes_single_quote(self):
        assert quote_query_value("it's") == "'it\\'s'"

    def test_escapes_backslash_before_quote(self):
        assert quote_query_value("a\\b") == "'a\\\\b'"


class TestDriveClientRequests:
    """Metadata calls against the fake Drive."""

    def test_list_files_filters_by_name(self):
        fake = FakeDrive()
        fake.add_folder("01-01-2024")
        fake.add_folder("02-01-2024")

        async def scenario():
            async with drive_client(fake) as client:
                return await client.list_files("name = '02-01-2024'")

        files = run(scenario())
        assert [f["name"] for f in files] == ["02-01-2024"]

    def test_sends_bearer_token(self):
        fake = FakeDrive()

        async def scenario():
            async with drive_client(fake, token="abc123") as client:
                await client.list_files("name = 'x'")

        run(scenario())
        assert fake.auth_headers == ["Bearer abc123"]

    def test_async_token_getter(self):
        """auth_token may be a coroutine function, e.g. TokenSource.get_token."""
        fake = FakeDrive()

        async def get_token():
            return "from-getter"

        async def scenario():
            async with drive_client(fake, token=get_token) as client:
                await client.list_files("name = 'x'")

        run(scenario())
        assert fake.auth_headers == ["Bearer from-getter"]

    def test_create_and_delete(self):
        fake = FakeDrive()

        async def scenario():
            async with drive_client(fake) as client:
                created = await client.create_file({"name": "f", "mimeType": "application/vnd.google-apps.folder"})
                assert created["id"] in fake.files
                await client.delete_file(created["id"])

        run(scenario())
        assert fake.files == {}

    def test_error_message_from_json_body(self):
        fake = FakeDrive()

        async def scenario():
            async with drive_client(fake) as client:
                await client.delete_file("missing")

        with pytest.raises(DriveApiError) as exc_info:
            run(scenario())
        assert exc_info.value.status_code == 404
        assert "File not found" in str(exc_info.value)

    def test_create_is_not_retried(self):
        fake = FakeDrive()
        fake.fail_next("POST", "/drive/v3/files", 503)

        async def scenario():
            async with drive_client(fake) as client:
                await client.create_file({"name": "f"})

        with pytest.raises(DriveApiError) as exc_info:
            run(scenario())
        assert exc_info.value.status_code == 503
        assert fake.files == {}

    def test_list_retries_transient_status(self):
        fake = FakeDrive()
        fake.add_folder("01-01-2024")
        fake.fail_next("GET", "/drive/v3/files", 503)

        async def scenario():
            async with drive_client(fake) as client:
                return await client.list_files("name = '01-01-2024'")

        files = run(scenario())
        assert len(files) == 1
        assert fake.requests.count(("GET", "/drive/v3/files")) == 2

    def test_client_error_not_retried(self):
        fake = FakeDrive()
        fake.fail_next("GET", "/drive/v3/files", 403)

        async def scenario():
            async with drive_client(fake) as client:
                await client.list_files("name = 'x'")

        with pytest.raises(DriveApiError):
            run(scenario())
        assert fake.requests.count(("GET", "/drive/v3/files")) == 1

    def test_requires_open_session(self):
        client = DriveClient(auth_token="t")
        with pytest.raises(RuntimeError):
            run(client.list_files("name = 'x'"))

    def test_session_uses_certifi_bundle(self):
        client = DriveClient(auth_token="t")

        async def scenario():
            with patch("backup_relay.drive.client.ssl.create_default_context", wraps=ssl.create_default_context) as ctx:
                async with client:
                    pass
            return ctx

        ctx = run(scenario())
        assert any(c.kwargs.get("cafile") == certifi.where() for c in ctx.call_args_list)


class TestDriveClientUpload:
    """Resumable uploads against the fake Drive."""

    @pytest.fixture
    def artifact(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "db_backup.zip"
            path.write_bytes(b"PK\x03\x04" + b"x" * 4096)
            yield path

    def test_upload_streams_file_under_parent(self, artifact):
        fake = FakeDrive()
        folder_id = fake.add_folder("01-01-2024")

        async def scenario():
            async with drive_client(fake) as client:
                return await client.upload_file(artifact, parents=[folder_id])

        created = run(scenario())
        assert created["name"] == "db_backup.zip"
        assert fake.uploads[created["id"]] == artifact.read_bytes()
        assert fake.files[created["id"]]["parents"] == [folder_id]

    def test_upload_missing_file_raises_oserror(self):
        fake = FakeDrive()

        async def scenario():
            async with drive_client(fake) as client:
                await client.upload_file(Path("/nonexistent/backup.zip"))

        with pytest.raises(OSError):
            run(scenario())
        assert fake.requests == []

    def test_upload_rejected_session(self, artifact):
        fake = FakeDrive()
        fake.fail_next("POST", "/upload/drive/v3/files", 401)

        async def scenario():
            async with drive_client(fake) as client:
                await client.upload_file(artifact)

        with pytest.raises(DriveApiError) as exc_info:
            run(scenario())
        assert exc_info.value.status_code == 401
        assert fake.uploads == {}
