"""
Logging setup for Backup Relay.

Logs go to stdout and to <log_dir>/uploader_app.log. Components attach
structured context (component, path, counts) through ContextLogger, which
renders it as key=value pairs after the message.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

LOG_FILENAME = "uploader_app.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that appends bound context fields to every message.

    Fields passed per call via ``extra`` are merged over the bound ones:

        log = ContextLogger(logger, component="FolderWatcher")
        log.info("Upload finished", extra={"path": path})
        # -> "Upload finished | component=FolderWatcher path=/backups/db.zip"
    """

    def process(self, msg, kwargs):
        fields = dict(self.extra)
        fields.update(kwargs.pop("extra", None) or {})
        if fields:
            msg = f"{msg} | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return msg, kwargs

    def bind(self, **context: Any) -> "ContextLogger":
        """Return a child adapter with additional bound fields."""
        return ContextLogger(self.logger, {**self.extra, **context})


def get_logger(name: str, **context: Any) -> ContextLogger:
    """Get a context-aware logger for a module."""
    return ContextLogger(logging.getLogger(name), context)


def parse_level(level: str) -> Optional[int]:
    """Map a level name (debug, info, warn, error) to a logging level, or None if unknown."""
    return LOG_LEVELS.get((level or "").strip().lower())


def setup_logging(log_dir: Optional[Path] = None, level: str = "info") -> Optional[Path]:
    """
    Configure the root logger.

    Args:
        log_dir: Directory for the log file (created if missing). None logs to stdout only.
        level: Log level name. Unknown names fall back to info with a warning.

    Returns:
        Path to the log file, or None when logging to stdout only

    Raises:
        OSError: If the log directory or file cannot be created
    """
    numeric_level = parse_level(level)

    root = logging.getLogger()
    root.setLevel(numeric_level or logging.INFO)
    root.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    log_path = None
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / LOG_FILENAME
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if numeric_level is None:
        root.warning(f"Invalid log level '{level}', using 'info'")

    return log_path
