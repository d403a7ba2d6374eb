"""
DocketWatch notification queue

Producer side: turns newly stored filings into pending queue items for every
subscriber, each scheduled according to the subscriber's cadence and bounded
by the fan-out safety limits.

Consumer side: drains due items, grouped by recipient and then digest type,
so one recipient gets one email per digest type. Each group is claimed
before anything is sent, which keeps concurrent drains from double-sending.
"""

import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from docketwatch.digest import DigestRenderer
from docketwatch.models import (
    DigestType,
    Filing,
    NotificationQueueItem,
    UserTier,
)
from docketwatch.notifiers.base import Notifier
from docketwatch.scheduling import DEFAULT_TIMEZONE, compute_scheduled_for
from docketwatch.storage import FilingStorage

logger = logging.getLogger(__name__)


@dataclass
class SafetyLimits:
    """Caps applied when generating queue items from one batch of filings."""

    max_notifications_per_run: int = 100
    max_dockets_per_user: int = 10
    max_filings_per_notification: int = 25


@dataclass
class DrainResult:
    """Counters for one drain invocation."""

    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class NotificationQueue:
    """Schedules, fans out and delivers digest notifications."""

    def __init__(
        self,
        storage: FilingStorage,
        notifier: Notifier,
        renderer: Optional[DigestRenderer] = None,
        timezone_name: str = DEFAULT_TIMEZONE,
        daily_hour: int = 13,
        weekly_weekday: int = 0,
        weekly_hour: int = 9,
        page_size: int = 100,
        claim_timeout_minutes: int = 15,
        limits: Optional[SafetyLimits] = None,
    ):
        self.storage = storage
        self.notifier = notifier
        self.renderer = renderer or DigestRenderer()
        self.timezone_name = timezone_name
        self.daily_hour = daily_hour
        self.weekly_weekday = weekly_weekday
        self.weekly_hour = weekly_hour
        self.page_size = page_size
        self.claim_timeout = timedelta(minutes=claim_timeout_minutes)
        self.limits = limits or SafetyLimits()

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def scheduled_for(self, digest_type: DigestType, now: datetime) -> datetime:
        return compute_scheduled_for(
            digest_type,
            now,
            self.timezone_name,
            daily_hour=self.daily_hour,
            weekly_weekday=self.weekly_weekday,
            weekly_hour=self.weekly_hour,
        )

    def enqueue(
        self,
        email: str,
        docket_number: str,
        digest_type: DigestType,
        now: datetime,
        filing_ids: Optional[List[str]] = None,
        filing_data: Optional[Dict[str, Any]] = None,
    ) -> NotificationQueueItem:
        """Persist one pending notification with its computed send time."""
        item = NotificationQueueItem(
            user_email=email.strip().lower(),
            docket_number=docket_number,
            digest_type=digest_type,
            scheduled_for=self.scheduled_for(digest_type, now),
            filing_ids=list(filing_ids or []),
            filing_data=filing_data,
            created_at=now,
        )
        self.storage.enqueue_notification(item)
        logger.info(
            f"📬 Queued {digest_type.value} notification for {item.user_email}: "
            f"{len(item.filing_ids)} filings from {docket_number}"
        )
        return item

    def queue_for_new_filings(
        self, new_filing_ids: Dict[str, List[str]], now: datetime
    ) -> Dict[str, Any]:
        """Queue notifications for subscribers of dockets with new filings.

        Args:
            new_filing_ids: Docket number -> ids of filings stored this run
            now: Current instant

        Returns:
            Summary with ``queued``, ``truncated`` and ``errors``
        """
        summary: Dict[str, Any] = {"queued": 0, "truncated": [], "errors": []}
        dockets = [d for d, ids in new_filing_ids.items() if ids]
        if not dockets:
            logger.info("📬 No new filings to queue notifications for")
            return summary

        subscribers = self.storage.get_subscribers(dockets)
        if not subscribers:
            logger.info("📬 No users subscribed to dockets with new filings")
            return summary

        per_user: "OrderedDict[str, List[Tuple[str, DigestType]]]" = OrderedDict()
        for subscriber in subscribers:
            entries = per_user.setdefault(subscriber.email, [])
            if (subscriber.docket_number, subscriber.frequency) not in entries:
                entries.append((subscriber.docket_number, subscriber.frequency))

        limits = self.limits
        for email, entries in per_user.items():
            if summary["queued"] >= limits.max_notifications_per_run:
                message = (
                    f"notification limit of {limits.max_notifications_per_run} per run reached"
                )
                logger.warning(f"⚠️ Safety limit: {message}")
                summary["truncated"].append(message)
                break

            # the docket cap counts every cadence the recipient uses
            user_dockets = list(dict.fromkeys(docket for docket, _ in entries))
            if len(user_dockets) > limits.max_dockets_per_user:
                message = (
                    f"{email}: {len(user_dockets)} dockets truncated to "
                    f"{limits.max_dockets_per_user}"
                )
                logger.warning(f"⚠️ Safety limit: {message}")
                summary["truncated"].append(message)
                allowed = set(user_dockets[: limits.max_dockets_per_user])
                entries = [entry for entry in entries if entry[0] in allowed]

            for docket_number, frequency in entries:
                if summary["queued"] >= limits.max_notifications_per_run:
                    break

                filing_ids = new_filing_ids.get(docket_number) or []
                if len(filing_ids) > limits.max_filings_per_notification:
                    message = (
                        f"{email} {docket_number}: {len(filing_ids)} filings truncated to "
                        f"{limits.max_filings_per_notification}"
                    )
                    logger.warning(f"⚠️ Safety limit: {message}")
                    summary["truncated"].append(message)
                    filing_ids = filing_ids[: limits.max_filings_per_notification]

                try:
                    self.enqueue(email, docket_number, frequency, now, filing_ids=filing_ids)
                    summary["queued"] += 1
                except Exception as e:
                    logger.error(f"Failed to queue notification for {email}: {e}")
                    summary["errors"].append(f"{email}: {e}")

        logger.info(
            f"📬 Notification queuing complete: {summary['queued']} queued, "
            f"{len(summary['errors'])} errors"
        )
        return summary

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    @staticmethod
    def group_items(
        items: List[NotificationQueueItem],
    ) -> "OrderedDict[str, OrderedDict[DigestType, List[NotificationQueueItem]]]":
        """Group items by recipient, then by digest type, preserving order."""
        groups: "OrderedDict[str, OrderedDict[DigestType, List[NotificationQueueItem]]]" = (
            OrderedDict()
        )
        for item in items:
            by_type = groups.setdefault(item.user_email, OrderedDict())
            by_type.setdefault(item.digest_type, []).append(item)
        return groups

    def _snapshot_filings(self, items: List[NotificationQueueItem]) -> List[Filing]:
        filings: List[Filing] = []
        for item in items:
            for data in (item.filing_data or {}).get("filings") or []:
                try:
                    filings.append(Filing.from_dict(data))
                except (KeyError, ValueError) as e:
                    logger.warning(f"Skipping unreadable snapshot filing in item {item.id}: {e}")
        return filings

    def resolve_filings(self, items: List[NotificationQueueItem]) -> List[Filing]:
        """Fetch the group's filings fresh, falling back to inline snapshots."""
        ids: List[str] = []
        for item in items:
            ids.extend(item.filing_ids)
            for data in (item.filing_data or {}).get("filings") or []:
                if isinstance(data, dict) and data.get("id"):
                    ids.append(str(data["id"]))
        ids = list(dict.fromkeys(ids))

        filings = self.storage.get_filings(ids) if ids else []
        stored_ids = {filing.id for filing in filings}

        # snapshots cover filings the store does not have, one docket may lack them
        missing = [f for f in self._snapshot_filings(items) if f.id not in stored_ids]
        if missing:
            logger.info(f"Using inline snapshot of {len(missing)} filings")
        return filings + missing

    def _resolve_tier(self, email: str, now: datetime) -> UserTier:
        user = self.storage.get_user(email)
        if user is None:
            return UserTier.FREE
        return user.effective_tier(now)

    def _deliver_group(
        self,
        email: str,
        digest_type: DigestType,
        items: List[NotificationQueueItem],
        now: datetime,
    ) -> List[Filing]:
        tier = self._resolve_tier(email, now)
        filings = self.resolve_filings(items)
        if not filings:
            raise LookupError("no filings available for notification")

        content = self.renderer.render(email, digest_type, filings, tier, now)
        message_id = self.notifier.send(email, content.subject, content.text, content.html)
        logger.info(
            f"📧 Sent {digest_type.value} notification to {email}: {len(filings)} filings "
            f"({tier.value} tier, id {message_id})"
        )
        return filings

    def drain(self, now: datetime) -> DrainResult:
        """Deliver every due pending item, one email per recipient and digest type."""
        result = DrainResult()
        stale_before = now - self.claim_timeout
        items = self.storage.get_due_notifications(now, self.page_size, stale_before)
        if not items:
            logger.info("📬 No pending notifications to process")
            return result

        logger.info(f"📬 Found {len(items)} due notifications")
        for email, by_type in self.group_items(items).items():
            for digest_type, group in by_type.items():
                token = uuid.uuid4().hex
                claimed_ids = self.storage.claim_notifications(
                    [i.id for i in group], token, now, stale_before
                )
                if not claimed_ids:
                    result.skipped += len(group)
                    continue
                claimed = [i for i in group if i.id in claimed_ids]
                result.processed += len(claimed)

                try:
                    filings = self._deliver_group(email, digest_type, claimed, now)
                except Exception as e:
                    logger.error(f"Failed to process {digest_type.value} for {email}: {e}")
                    self.storage.mark_notifications_failed(claimed_ids, token, str(e))
                    result.failed += len(claimed)
                    result.errors.append(f"{email} {digest_type.value}: {e}")
                    continue

                self.storage.mark_notifications_sent(claimed_ids, token, now)
                result.sent += len(claimed)
                if digest_type != DigestType.SEED_DIGEST:
                    try:
                        self.storage.record_user_notifications(
                            email, [f.id for f in filings], digest_type, now
                        )
                    except Exception as e:
                        logger.warning(f"Could not record delivered filings for {email}: {e}")

        logger.info(
            f"📬 Queue processing complete: {result.sent} sent, {result.failed} failed, "
            f"{result.processed} total"
        )
        return result
