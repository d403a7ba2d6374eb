"""Email notifier implementation using SMTP."""

import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional

from .base import NotificationError


class EmailNotifier:
    """Sends notifications via SMTP email."""

    def __init__(
        self,
        host: str,
        port: int,
        from_address: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.use_tls = use_tls
        self.timeout = timeout

    def send(
        self, to_address: str, subject: str, text: str, html: Optional[str] = None
    ) -> str:
        """Send a plain-text email (with optional HTML alternative).

        Returns:
            The generated Message-ID header.

        Raises:
            NotificationError: If sending fails.
        """
        if not to_address:
            raise NotificationError("Email notification failed: no recipient")

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.from_address
        message["To"] = to_address
        message["Message-ID"] = make_msgid(domain=self.from_address.split("@")[-1])
        message.set_content(text or "")

        if html:
            message.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()

                if self.username and self.password:
                    server.login(self.username, self.password)

                server.send_message(message)

        except Exception as exc:
            raise NotificationError(f"Email notification failed: {exc}") from exc

        return str(message["Message-ID"])
