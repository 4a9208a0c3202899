"""
Google Drive interaction module.

Handles authentication, token storage, the API client, dated folders and uploads.
"""

from .auth import OAuthManager, TokenSource, load_client_config
from .client import DriveClient, DriveClientConfig
from .folders import RemoteFolderManager, date_name
from .tokens import Token, TokenStore
from .uploader import DriveUploader

__all__ = [
    "OAuthManager",
    "TokenSource",
    "load_client_config",
    "DriveClient",
    "DriveClientConfig",
    "RemoteFolderManager",
    "date_name",
    "Token",
    "TokenStore",
    "DriveUploader",
]
