"""
One-time seed (welcome) digests for new subscriptions

A new subscription gets a single ``seed_digest`` carrying the docket's most
recent filing. The filing comes from storage when the docket is already
tracked, otherwise from the source, in which case the docket is registered
with that filing as its latest seen id so the first detection pass starts
from it.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from docketwatch.ecfs import ECFSClient
from docketwatch.enrichment import FilingEnricher
from docketwatch.models import DigestType, Filing, Subscriber, UserTier
from docketwatch.notification_queue import NotificationQueue
from docketwatch.storage import FilingStorage

logger = logging.getLogger(__name__)


class SubscriptionSeeder:
    """Queues the welcome digest for subscriptions still flagged for seeding."""

    def __init__(
        self,
        storage: FilingStorage,
        client: ECFSClient,
        queue: NotificationQueue,
        enricher: Optional[FilingEnricher] = None,
    ):
        self.storage = storage
        self.client = client
        self.queue = queue
        self.enricher = enricher

    def _latest_filing(self, docket_number: str) -> Optional[Filing]:
        docket = self.storage.get_docket(docket_number)
        if docket and docket.latest_seen_filing_id:
            stored = self.storage.get_latest_filing(docket_number)
            if stored:
                return stored

        filing = self.client.fetch_single_latest_filing(docket_number)
        if filing is None:
            return None

        if self.enricher is not None:
            self.enricher.enrich(filing)

        self.storage.ensure_docket(docket_number)
        self.storage.store_filings([filing])
        self.storage.update_latest_seen(docket_number, filing.id)
        return filing

    def seed(self, subscriber: Subscriber, now: datetime) -> bool:
        """Queue the seed digest for one subscription; returns True if queued."""
        if not subscriber.needs_seed:
            return False

        filing = self._latest_filing(subscriber.docket_number)
        if filing is None:
            logger.info(f"No filings yet for {subscriber.docket_number}, seed deferred")
            return False

        # At most one seed per subscription: the flag is cleared before enqueueing.
        if not self.storage.mark_subscription_seeded(
            subscriber.email, subscriber.docket_number
        ):
            return False

        tier = subscriber.tier or UserTier.FREE
        self.queue.enqueue(
            subscriber.email,
            subscriber.docket_number,
            DigestType.SEED_DIGEST,
            now,
            filing_data={"filings": [filing.to_dict()], "tier": tier.value},
        )
        logger.info(f"🌱 Seed digest queued for {subscriber.email} on {subscriber.docket_number}")
        return True

    def seed_pending(self, now: datetime) -> Dict[str, Any]:
        """Seed every subscription that still needs it."""
        summary: Dict[str, Any] = {"seeded": 0, "deferred": 0, "errors": []}
        pending: List[Subscriber] = self.storage.get_subscriptions_needing_seed()
        for subscriber in pending:
            try:
                if self.seed(subscriber, now):
                    summary["seeded"] += 1
                else:
                    summary["deferred"] += 1
            except Exception as e:
                logger.error(
                    f"Seeding failed for {subscriber.email} on {subscriber.docket_number}: {e}"
                )
                summary["errors"].append(f"{subscriber.email} {subscriber.docket_number}: {e}")
        return summary
