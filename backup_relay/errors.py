"""
Exceptions for Backup Relay.

Exception hierarchy:
    BackupRelayError
    ├── ConfigError
    ├── AuthorizationError
    │   ├── AuthorizationDenied
    │   └── AuthorizationCancelled
    ├── DriveApiError
    ├── UploadError
    │   └── UploadTimeoutError
    ├── WatchError
    └── NotificationError
"""


class BackupRelayError(Exception):
    """Base exception for all Backup Relay errors."""


class ConfigError(BackupRelayError):
    """Configuration is missing or invalid. Fatal at startup."""


class AuthorizationError(BackupRelayError):
    """OAuth client could not be built (bind failure, exchange failure, refresh failure)."""


class AuthorizationDenied(AuthorizationError):
    """The browser callback arrived without an authorization code."""


class AuthorizationCancelled(AuthorizationError):
    """Shutdown was requested while waiting for interactive authorization."""


class DriveApiError(BackupRelayError):
    """Raised when the Drive API returns a non-2xx response."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"Drive API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class UploadError(BackupRelayError):
    """A single upload attempt failed."""


class UploadTimeoutError(UploadError):
    """The transfer deadline expired before the upload finished."""


class WatchError(BackupRelayError):
    """The watch directory could not be observed."""


class NotificationError(BackupRelayError):
    """The operator notification could not be delivered."""
