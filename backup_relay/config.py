"""
Configuration for Backup Relay.

Settings come from command-line flags. Most flags default to a
BACKUP_RELAY_* environment variable (a .env file is loaded first by
uploader.py), then to a built-in default.
"""

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .constants import (
    CALLBACK_PORT,
    DEFAULT_ARTIFACT_SUFFIX,
    DEFAULT_MAX_CONCURRENT_UPLOADS,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_SETTLE_DELAY,
    DEFAULT_SHUTDOWN_GRACE,
)
from .drive.utils import parse_drive_folder_url
from .errors import ConfigError

ENV_PREFIX = "BACKUP_RELAY_"

DESTINATION_GDRIVE = "gdrive"
DESTINATION_LOCAL = "local"
DESTINATIONS = (DESTINATION_GDRIVE, DESTINATION_LOCAL)


@dataclass
class UploaderConfig:
    """Runtime settings for the uploader."""
    watch_dir: Path = Path("./backups")
    log_dir: Path = Path("./logs")
    credentials_file: Path = Path("credentials.json")
    token_file: Path = Path("token.json")
    log_level: str = "info"
    suffix: str = DEFAULT_ARTIFACT_SUFFIX
    settle_delay: float = DEFAULT_SETTLE_DELAY
    max_concurrent_uploads: int = DEFAULT_MAX_CONCURRENT_UPLOADS
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE
    retention_days: int = DEFAULT_RETENTION_DAYS
    callback_port: int = CALLBACK_PORT
    drive_folder: Optional[str] = None
    upload_timeout: float = 0.0
    destination: str = DESTINATION_GDRIVE
    archive_dir: Optional[Path] = None

    @property
    def drive_folder_id(self) -> Optional[str]:
        """Root folder ID parsed from ``drive_folder`` (a Drive URL or raw ID)."""
        if not self.drive_folder:
            return None
        folder_id, error = parse_drive_folder_url(self.drive_folder)
        if error:
            raise ConfigError(f"Invalid drive folder '{self.drive_folder}': {error}")
        return folder_id

    def validate(self):
        """
        Check the settings.

        An unknown log level is not an error here; setup_logging falls back
        to info with a warning.

        Raises:
            ConfigError: On the first invalid setting
        """
        if self.destination not in DESTINATIONS:
            raise ConfigError(f"Unknown destination '{self.destination}' (choose from {', '.join(DESTINATIONS)})")
        if self.destination == DESTINATION_LOCAL and not self.archive_dir:
            raise ConfigError("--archive-dir is required when destination is 'local'")
        if self.settle_delay < 0:
            raise ConfigError("settle delay cannot be negative")
        if self.max_concurrent_uploads < 1:
            raise ConfigError("max concurrent uploads must be at least 1")
        if self.shutdown_grace < 0:
            raise ConfigError("shutdown grace cannot be negative")
        if self.retention_days < 1:
            raise ConfigError("retention days must be at least 1")
        if not 0 < self.callback_port < 65536:
            raise ConfigError(f"invalid callback port {self.callback_port}")
        if self.upload_timeout < 0:
            raise ConfigError("upload timeout cannot be negative")
        # Raises ConfigError for a malformed folder link
        _ = self.drive_folder_id

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "UploaderConfig":
        return cls(
            watch_dir=Path(args.watch_dir),
            log_dir=Path(args.log_dir),
            credentials_file=Path(args.credentials_file),
            token_file=Path(args.token_file),
            log_level=args.log_level,
            suffix=args.suffix,
            settle_delay=args.settle_delay,
            max_concurrent_uploads=args.max_concurrent_uploads,
            shutdown_grace=args.shutdown_grace,
            retention_days=args.retention_days,
            callback_port=args.callback_port,
            drive_folder=args.drive_folder or None,
            upload_timeout=args.upload_timeout,
            destination=args.destination,
            archive_dir=Path(args.archive_dir) if args.archive_dir else None,
        )


def _env(name: str, default: Optional[str], environ: dict) -> Optional[str]:
    return environ.get(ENV_PREFIX + name, default)


def build_parser(environ: Optional[dict] = None) -> argparse.ArgumentParser:
    """Build the CLI parser, with defaults taken from ``environ`` (os.environ if None)."""
    environ = os.environ if environ is None else environ
    defaults = UploaderConfig()

    parser = argparse.ArgumentParser(
        description="Backup Relay - Upload new database backups to Google Drive"
    )
    parser.add_argument(
        "--watch-dir",
        default=_env("WATCH_DIR", str(defaults.watch_dir), environ),
        help="Directory where backup artifacts appear (default: ./backups)"
    )
    parser.add_argument(
        "--log-dir",
        default=_env("LOG_DIR", str(defaults.log_dir), environ),
        help="Directory for uploader_app.log (default: ./logs)"
    )
    parser.add_argument(
        "--credentials-file",
        default=_env("CREDENTIALS_FILE", str(defaults.credentials_file), environ),
        help="Google OAuth client credentials (default: credentials.json)"
    )
    parser.add_argument(
        "--token-file",
        default=_env("TOKEN_FILE", str(defaults.token_file), environ),
        help="Where the OAuth token is stored (default: token.json)"
    )
    parser.add_argument(
        "--log-level",
        default=_env("LOG_LEVEL", defaults.log_level, environ),
        help="debug, info, warn or error (default: info)"
    )
    parser.add_argument(
        "--suffix",
        default=_env("SUFFIX", defaults.suffix, environ),
        help="Only upload files ending with this suffix; empty uploads everything (default: .zip)"
    )
    parser.add_argument(
        "--settle-delay",
        type=float,
        default=defaults.settle_delay,
        help="Seconds to wait after a file appears before uploading (default: 2)"
    )
    parser.add_argument(
        "--max-concurrent-uploads",
        type=int,
        default=defaults.max_concurrent_uploads,
        help="Maximum simultaneous uploads (default: 4)"
    )
    parser.add_argument(
        "--shutdown-grace",
        type=float,
        default=defaults.shutdown_grace,
        help="Seconds to let running uploads finish on shutdown (default: 30)"
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        default=defaults.retention_days,
        help="Delete the dated folder this many days old (default: 2)"
    )
    parser.add_argument(
        "--callback-port",
        type=int,
        default=defaults.callback_port,
        help="Local port for the OAuth callback (default: 8989)"
    )
    parser.add_argument(
        "--drive-folder",
        default=_env("DRIVE_FOLDER", None, environ),
        help="Drive folder URL or ID to hold the dated folders (default: My Drive root)"
    )
    parser.add_argument(
        "--upload-timeout",
        type=float,
        default=defaults.upload_timeout,
        help="Per-upload deadline in seconds; 0 disables it (default: 0)"
    )
    parser.add_argument(
        "--destination",
        choices=DESTINATIONS,
        default=defaults.destination,
        help="Upload to Google Drive or copy to a local archive (default: gdrive)"
    )
    parser.add_argument(
        "--archive-dir",
        default=None,
        help="Archive directory for --destination local"
    )
    return parser


def load_config(argv: Optional[list] = None, environ: Optional[dict] = None) -> UploaderConfig:
    """
    Parse and validate settings.

    Raises:
        ConfigError: If a setting is invalid
    """
    args = build_parser(environ).parse_args(argv)
    config = UploaderConfig.from_args(args)
    config.validate()
    return config
