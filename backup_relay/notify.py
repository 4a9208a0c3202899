"""
Operator notification for Backup Relay.

Sends a WhatsApp template message when an upload fails. Notification is
best-effort: callers log delivery failures and carry on.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import requests

from .errors import ConfigError, NotificationError

logger = logging.getLogger(__name__)

WHATSAPP_API_URL = "https://api.wts.chat/chat/v1/message/send-sync"
TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M:%S"
DEFAULT_RECIPIENT_NAME = "Admin"


@dataclass
class WhatsAppConfig:
    """Credentials and routing for the WhatsApp message API."""
    token: str
    sender: str
    recipient: str
    template_id: str = ""
    recipient_name: str = DEFAULT_RECIPIENT_NAME
    api_url: str = WHATSAPP_API_URL
    timeout: int = 15

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "WhatsAppConfig":
        """
        Read WHATSAPP_TOKEN, WHATSAPP_PHONE_NUMBER_FROM, WHATSAPP_PHONE_NUMBER_TO
        and WHATSAPP_TEMPLATE_ID.

        Raises:
            ConfigError: If a required variable is not set
        """
        environ = os.environ if environ is None else environ
        values = {
            "WHATSAPP_TOKEN": environ.get("WHATSAPP_TOKEN", ""),
            "WHATSAPP_PHONE_NUMBER_FROM": environ.get("WHATSAPP_PHONE_NUMBER_FROM", ""),
            "WHATSAPP_PHONE_NUMBER_TO": environ.get("WHATSAPP_PHONE_NUMBER_TO", ""),
        }
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise ConfigError(f"{', '.join(missing)} not set")

        return cls(
            token=values["WHATSAPP_TOKEN"],
            sender=values["WHATSAPP_PHONE_NUMBER_FROM"],
            recipient=values["WHATSAPP_PHONE_NUMBER_TO"],
            template_id=environ.get("WHATSAPP_TEMPLATE_ID", ""),
        )


class WhatsAppNotifier:
    """Posts failure alerts to the WhatsApp message API."""

    def __init__(
        self,
        config: WhatsAppConfig,
        session: Optional[requests.Session] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.session = session or requests.Session()
        self._now = now

    def build_payload(self, subject: str, error: str) -> dict:
        return {
            "body": {
                "parameters": {
                    "nome": self.config.recipient_name,
                    "database": subject,
                    "data_hora": self._now().strftime(TIMESTAMP_FORMAT),
                    "erro": error,
                },
                "templateId": self.config.template_id,
            },
            "from": self.config.sender,
            "to": self.config.recipient,
        }

    def send(self, subject: str, error: str):
        """
        Send one alert.

        Raises:
            NotificationError: If the request fails or is rejected
        """
        headers = {
            "accept": "application/json",
            "content-type": "application/*+json",
            "Authorization": self.config.token,
        }
        try:
            response = self.session.post(
                self.config.api_url,
                json=self.build_payload(subject, error),
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"Failed to send message: {e}") from e

        if response.status_code != 200:
            raise NotificationError(f"Failed to send message: {response.text}")

    async def notify_failure(self, path: Path, error: BaseException):
        await asyncio.to_thread(self.send, Path(path).name, str(error))
        logger.info(f"Failure notification sent | path={path}")


def notifier_from_env(environ: Optional[dict] = None) -> Optional[WhatsAppNotifier]:
    """Build the WhatsApp notifier, or return None (with a warning) if it is not configured."""
    try:
        config = WhatsAppConfig.from_env(environ)
    except ConfigError as e:
        logger.warning(f"WhatsApp notifications disabled | reason={e}")
        return None
    return WhatsAppNotifier(config)
