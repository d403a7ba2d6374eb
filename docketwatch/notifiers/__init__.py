"""Email delivery for DocketWatch."""

from .base import NotificationError, Notifier
from .console import ConsoleNotifier
from .email import EmailNotifier
from .resend import ResendNotifier

__all__ = [
    "Notifier",
    "NotificationError",
    "ConsoleNotifier",
    "EmailNotifier",
    "ResendNotifier",
]
