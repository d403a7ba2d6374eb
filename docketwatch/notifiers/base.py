"""Base notifier interface."""

from typing import Optional, Protocol


class Notifier(Protocol):
    """Protocol for email delivery providers."""

    def send(
        self, to_address: str, subject: str, text: str, html: Optional[str] = None
    ) -> str:
        """Deliver one email.

        Args:
            to_address: Recipient email address
            subject: Subject line
            text: Plain-text body
            html: Optional HTML alternative

        Returns:
            The provider's message identifier

        Raises:
            NotificationError: If the message fails to send
        """
        ...


class NotificationError(Exception):
    """Raised when a notification fails to send."""
    pass
