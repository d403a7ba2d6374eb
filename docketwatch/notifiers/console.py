"""Dry-run notifier that prints emails instead of sending them."""

import uuid
from typing import List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel


class ConsoleNotifier:
    """Renders outgoing emails to the terminal and records them."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.sent: List[Tuple[str, str, str]] = []

    def send(
        self, to_address: str, subject: str, text: str, html: Optional[str] = None
    ) -> str:
        message_id = f"dry-run-{uuid.uuid4().hex[:12]}"
        self.sent.append((to_address, subject, text))
        self.console.print(
            Panel(text, title=f"[yellow]DRY RUN[/yellow] {subject}", subtitle=to_address)
        )
        return message_id
