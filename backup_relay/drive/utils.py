"""
Drive-related utilities for Backup Relay.
"""

import re

FOLDER_URL_PATTERN = re.compile(r"drive\.google\.com/drive(?:/u/\d+)?/folders/([a-zA-Z0-9_-]+)")
FILE_URL_PATTERN = re.compile(r"drive\.google\.com/file/d/([a-zA-Z0-9_-]+)")
RAW_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{10,}$")


def parse_drive_folder_url(url_or_id: str) -> tuple[str | None, str | None]:
    """
    Extract a Google Drive folder ID from a URL or raw ID.

    Used for the backup root folder setting. Supports:
    - https://drive.google.com/drive/folders/FOLDER_ID
    - https://drive.google.com/drive/u/0/folders/FOLDER_ID?usp=sharing
    - Raw folder ID (alphanumeric with - and _)

    Returns:
        (folder_id, None) if valid, (None, error_message) otherwise
    """
    url_or_id = (url_or_id or "").strip()

    if FILE_URL_PATTERN.search(url_or_id):
        return None, "That's a file link, not a folder link"

    match = FOLDER_URL_PATTERN.search(url_or_id)
    if match:
        return match.group(1), None

    if RAW_ID_PATTERN.match(url_or_id):
        return url_or_id, None

    if "drive.google.com" in url_or_id:
        return None, "Unrecognized Google Drive URL format"

    return None, "Not a Google Drive folder URL or ID"
