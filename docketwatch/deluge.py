"""
DocketWatch deluge guard

Per-docket suspension under abnormal filing volume. A docket enters the
``deluged`` state when change detection signals a deluge and leaves it only
through the daily reset. Subscribers of the docket get one high-activity
notice on entry.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from docketwatch.digest import DigestRenderer
from docketwatch.notifiers.base import Notifier
from docketwatch.storage import FilingStorage
from docketwatch.utils import utc_now

logger = logging.getLogger(__name__)

LAST_RESET_KEY = "deluge_last_reset_date"


class DelugeGuard:
    """Tracks and persists per-docket deluge suspension."""

    def __init__(
        self,
        storage: FilingStorage,
        notifier: Optional[Notifier] = None,
        renderer: Optional[DigestRenderer] = None,
    ):
        self.storage = storage
        self.notifier = notifier
        self.renderer = renderer or DigestRenderer()

    def is_suspended(self, docket_number: str) -> bool:
        docket = self.storage.get_docket(docket_number)
        return bool(docket and docket.is_deluged)

    def trip(self, docket_number: str, at: Optional[datetime] = None) -> bool:
        """Suspend a docket; returns True if this call moved it into ``deluged``.

        The high-activity notice is sent only on that transition.
        """
        transitioned = self.storage.set_deluged(docket_number, at or utc_now())
        if not transitioned:
            logger.info(f"Docket {docket_number} already in deluge mode")
            return False

        logger.warning(f"🌊 Docket {docket_number} suspended: deluge detected")
        self.notify_subscribers(docket_number)
        return True

    def notify_subscribers(self, docket_number: str) -> Dict[str, int]:
        """Send the high-activity notice to every subscriber of the docket."""
        result = {"sent": 0, "failed": 0}
        if self.notifier is None:
            return result

        try:
            subscribers = self.storage.get_subscribers([docket_number])
        except Exception as e:
            logger.error(f"Could not load subscribers for deluge notice {docket_number}: {e}")
            return result

        content = self.renderer.render_high_activity(docket_number)
        for email in sorted({s.email for s in subscribers}):
            try:
                self.notifier.send(email, content.subject, content.text, content.html)
                result["sent"] += 1
            except Exception as e:
                logger.error(f"Deluge notice to {email} failed: {e}")
                result["failed"] += 1

        logger.info(
            f"Deluge notice for {docket_number}: {result['sent']} sent, "
            f"{result['failed']} failed"
        )
        return result

    def daily_reset(self, today: Optional[str] = None) -> List[str]:
        """Lift every deluge flag and record the reset date.

        Args:
            today: Operational date (``YYYY-MM-DD``) to record as the last reset

        Returns:
            Docket numbers returned to normal monitoring
        """
        lifted = self.storage.clear_deluge_flags()
        if today:
            self.storage.set_state(LAST_RESET_KEY, today)
        if lifted:
            logger.info(f"Lifted deluge mode for {len(lifted)} dockets: {', '.join(lifted)}")
        return lifted

    def reset_if_new_day(self, today: str) -> Optional[List[str]]:
        """Run the daily reset once per operational day.

        Returns:
            The lifted dockets if a reset ran, otherwise None
        """
        if self.storage.get_state(LAST_RESET_KEY) == today:
            return None
        return self.daily_reset(today)
