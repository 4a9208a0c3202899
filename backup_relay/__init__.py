"""
Backup Relay - Ship database backup artifacts to Google Drive.

Watches a staging directory for new backup artifacts, uploads them into a
dated Google Drive folder and cleans up after a successful delivery.

Import from submodules directly:
    from backup_relay.config import UploaderConfig
    from backup_relay.drive import OAuthManager, DriveUploader
    from backup_relay.watch import FolderWatcher
"""


def _get_version():
    """Installed distribution version, or the VERSION file in a source checkout."""
    from importlib.metadata import PackageNotFoundError, version
    try:
        return version("backup-relay")
    except PackageNotFoundError:
        from pathlib import Path
        version_file = Path(__file__).parent.parent / "VERSION"
        if version_file.exists():
            return version_file.read_text().strip()
        return "0.0.0"


__version__ = _get_version()
