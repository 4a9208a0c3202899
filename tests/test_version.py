"""
Tests for package version lookup.
"""

from importlib.metadata import PackageNotFoundError
from pathlib import Path
from unittest.mock import patch

import backup_relay

VERSION_FILE = Path(__file__).parent.parent / "VERSION"


class TestVersion:
    def test_matches_version_file(self):
        assert backup_relay.__version__ == VERSION_FILE.read_text().strip()

    def test_falls_back_to_version_file_when_not_installed(self):
        with patch("importlib.metadata.version", side_effect=PackageNotFoundError("backup-relay")):
            assert backup_relay._get_version() == VERSION_FILE.read_text().strip()

    def test_prefers_installed_metadata(self):
        with patch("importlib.metadata.version", return_value="9.9.9"):
            assert backup_relay._get_version() == "9.9.9"
