"""
OAuth token persistence for Backup Relay.

The token file holds {access_token, token_type, refresh_token, expiry} as JSON
and is only ever readable by its owner (mode 0600).
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

TOKEN_FILE_MODE = 0o600

# RFC 3339 timestamps may carry nanoseconds; datetime accepts at most microseconds
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_expiry(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an RFC 3339 expiry string into an aware UTC datetime.

    Returns None for empty values and for the zero time some writers emit
    to mean "never expires".
    """
    if not value:
        return None
    value = _FRACTION_RE.sub(r"\1", value.strip())
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.year <= 1:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class Token:
    """An OAuth2 access/refresh token pair."""
    access_token: str = ""
    refresh_token: str = ""
    expiry: Optional[datetime] = None
    token_type: str = "Bearer"

    @property
    def is_usable(self) -> bool:
        """A token can authenticate a request if it has an access or a refresh credential."""
        return bool(self.access_token or self.refresh_token)

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else "",
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Token":
        return cls(
            access_token=data.get("access_token") or "",
            refresh_token=data.get("refresh_token") or "",
            expiry=parse_expiry(data.get("expiry")),
            token_type=data.get("token_type") or "Bearer",
        )


class TokenStore:
    """Loads and saves a Token at a fixed path."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[Token]:
        """
        Load the token from disk.

        Returns:
            Token, or None if the file is absent, undecodable, or holds no credential
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info(f"Token file not found | path={self.path}")
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Token file could not be read | path={self.path} error={e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Token file is not a JSON object | path={self.path}")
            return None

        try:
            token = Token.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Token file has an invalid field | path={self.path} error={e}")
            return None

        if not token.is_usable:
            logger.warning(f"Token file has no access or refresh token | path={self.path}")
            return None
        return token

    def save(self, token: Token):
        """
        Write the token, creating or truncating the file with owner-only permissions.

        Raises:
            OSError: If the file cannot be written
        """
        logger.info(f"Saving OAuth token | path={self.path}")
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, TOKEN_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            # An existing file keeps its old mode through O_CREAT; tighten it
            if hasattr(os, "fchmod"):
                os.fchmod(f.fileno(), TOKEN_FILE_MODE)
            json.dump(token.to_dict(), f)
            f.write("\n")
