"""Resend HTTP API notifier."""

import logging
from typing import Any, Dict, Optional

import requests

from .base import NotificationError

logger = logging.getLogger(__name__)


class ResendNotifier:
    """Sends email through the Resend REST API."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 30,
    ):
        """Initialize Resend notifier.

        Args:
            api_key: Resend API key
            from_address: Verified sender address
            api_url: Emails endpoint
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.from_address = from_address
        self.api_url = api_url
        self.timeout = timeout

    def send(
        self, to_address: str, subject: str, text: str, html: Optional[str] = None
    ) -> str:
        """Send one email; returns the Resend message id.

        Raises:
            NotificationError: If the API rejects the message or is unreachable
        """
        payload: Dict[str, Any] = {
            "from": self.from_address,
            "to": [to_address],
            "subject": subject,
            "text": text,
        }
        if html:
            payload["html"] = html

        try:
            response = requests.post(
                self.api_url,
                json=payload,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send email to {to_address}: {e}")
            raise NotificationError(f"Resend delivery failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise NotificationError(f"Resend returned invalid JSON: {e}") from e

        message_id = data.get("id") if isinstance(data, dict) else None

        if not message_id:
            raise NotificationError("Resend response did not include a message id")

        logger.info(f"Sent email to {to_address} (id {message_id})")
        return str(message_id)
