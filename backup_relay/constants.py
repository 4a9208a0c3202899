"""
Shared constants for Backup Relay.
"""

# Full Drive access is needed to create and delete the dated folders
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# Remote folder names are the upload date, e.g. "01-01-2024"
DATE_NAME_FORMAT = "%d-%m-%Y"

# Dated folders exactly this many days old are deleted
DEFAULT_RETENTION_DAYS = 2

# Local OAuth callback listener
CALLBACK_HOST = "localhost"
CALLBACK_PORT = 8989
CALLBACK_PATH = "/callback"
CALLBACK_SHUTDOWN_TIMEOUT = 5.0

# Watcher / upload task defaults
DEFAULT_ARTIFACT_SUFFIX = ".zip"
DEFAULT_SETTLE_DELAY = 2.0
DEFAULT_MAX_CONCURRENT_UPLOADS = 4
DEFAULT_SHUTDOWN_GRACE = 30.0
