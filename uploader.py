#!/usr/bin/env python3
"""
Backup Relay - Upload new database backups to Google Drive.

Watches a staging directory and uploads each new backup artifact into a
dated Drive folder. Settings come from flags, BACKUP_RELAY_* environment
variables and a .env file in the working directory.
"""

import asyncio
import sys

from dotenv import load_dotenv

from backup_relay.app import run
from backup_relay.config import load_config
from backup_relay.errors import ConfigError
from backup_relay.logs import setup_logging


def main() -> int:
    """Entry point."""
    load_dotenv()

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        log_path = setup_logging(config.log_dir, config.log_level)
    except OSError as e:
        print(f"Error: could not open log file in {config.log_dir}: {e}", file=sys.stderr)
        return 1
    if log_path:
        print(f"Logging to {log_path}")

    return asyncio.run(run(config))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nCancelled by user.")
        sys.exit(0)
