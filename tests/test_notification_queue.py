"""Tests for the notification queue: fan-out, scheduling and drain."""

import sqlite3
from datetime import timedelta
from typing import Any

import pytest

from docketwatch.digest import DigestRenderer
from docketwatch.models import DigestType, QueueStatus, UserTier
from docketwatch.notification_queue import NotificationQueue, SafetyLimits
from docketwatch.storage import FilingStorage


@pytest.fixture
def queue(storage: FilingStorage, notifier: Any) -> NotificationQueue:
    return NotificationQueue(
        storage, notifier, DigestRenderer(app_url="https://app.docketwatch.test")
    )


def _statuses(storage: FilingStorage) -> list:
    conn = sqlite3.connect(storage.db_path)
    rows = conn.execute("SELECT status FROM notification_queue ORDER BY id").fetchall()
    conn.close()
    return [row[0] for row in rows]


class TestEnqueue:
    """Producer side."""

    def test_scheduled_for_by_digest_type(self, queue: NotificationQueue, now: Any) -> None:
        daily = queue.enqueue("R@Example.com", "11-42", DigestType.DAILY, now, ["1"])
        immediate = queue.enqueue("r@example.com", "11-42", DigestType.IMMEDIATE, now, ["1"])

        assert daily.user_email == "r@example.com"
        assert daily.scheduled_for.isoformat() == "2026-10-16T17:00:00+00:00"
        assert immediate.scheduled_for == now
        assert daily.id is not None

    def test_one_item_per_subscriber_and_docket(
        self, queue: NotificationQueue, storage: FilingStorage, now: Any
    ) -> None:
        storage.add_subscription("a@example.com", "11-42", DigestType.IMMEDIATE)
        storage.add_subscription("b@example.com", "11-42", DigestType.DAILY)
        storage.add_subscription("b@example.com", "17-108", DigestType.DAILY)
        storage.add_subscription("c@example.com", "02-278", DigestType.DAILY)

        summary = queue.queue_for_new_filings(
            {"11-42": ["B", "C"], "17-108": ["X"], "02-278": []}, now
        )

        assert summary["queued"] == 3
        assert summary["truncated"] == []
        pending = storage.get_due_notifications(
            now + timedelta(days=2), 100, now - timedelta(minutes=15)
        )
        assert sorted((i.user_email, i.docket_number, tuple(i.filing_ids)) for i in pending) == [
            ("a@example.com", "11-42", ("B", "C")),
            ("b@example.com", "11-42", ("B", "C")),
            ("b@example.com", "17-108", ("X",)),
        ]

    def test_nothing_to_queue(self, queue: NotificationQueue, now: Any) -> None:
        assert queue.queue_for_new_filings({}, now)["queued"] == 0


class TestSafetyLimits:
    """Fan-out caps truncate and log, never fail."""

    def test_filings_per_notification(self, storage: FilingStorage, notifier: Any, now: Any) -> None:
        storage.add_subscription("a@example.com", "11-42", DigestType.IMMEDIATE)
        queue = NotificationQueue(
            storage, notifier, limits=SafetyLimits(max_filings_per_notification=25)
        )
        ids = [str(i) for i in range(40)]

        summary = queue.queue_for_new_filings({"11-42": ids}, now)

        [item] = storage.get_due_notifications(now, 100, now - timedelta(minutes=15))
        assert item.filing_ids == ids[:25]
        assert len(summary["truncated"]) == 1

    def test_dockets_per_user(self, storage: FilingStorage, notifier: Any, now: Any) -> None:
        dockets = [f"{n}-1" for n in range(10, 22)]
        for docket in dockets:
            storage.add_subscription("a@example.com", docket, DigestType.IMMEDIATE)
        queue = NotificationQueue(storage, notifier, limits=SafetyLimits(max_dockets_per_user=10))

        summary = queue.queue_for_new_filings({d: ["f-" + d] for d in dockets}, now)

        assert summary["queued"] == 10
        assert any("truncated to 10" in message for message in summary["truncated"])

    def test_dockets_per_user_across_frequencies(
        self, storage: FilingStorage, notifier: Any, now: Any
    ) -> None:
        frequencies = [DigestType.IMMEDIATE, DigestType.DAILY, DigestType.WEEKLY]
        dockets = [f"{n}-1" for n in range(10, 16)]
        for index, docket in enumerate(dockets):
            storage.add_subscription("a@example.com", docket, frequencies[index % 3])
        queue = NotificationQueue(storage, notifier, limits=SafetyLimits(max_dockets_per_user=4))

        summary = queue.queue_for_new_filings({d: ["f-" + d] for d in dockets}, now)

        assert summary["queued"] == 4
        assert summary["truncated"] == ["a@example.com: 6 dockets truncated to 4"]
        pending = storage.get_due_notifications(
            now + timedelta(days=8), 100, now - timedelta(minutes=15)
        )
        assert len({item.docket_number for item in pending}) == 4

    def test_notifications_per_run(self, storage: FilingStorage, notifier: Any, now: Any) -> None:
        for n in range(5):
            storage.add_subscription(f"user{n}@example.com", "11-42", DigestType.IMMEDIATE)
        queue = NotificationQueue(
            storage, notifier, limits=SafetyLimits(max_notifications_per_run=3)
        )

        summary = queue.queue_for_new_filings({"11-42": ["1"]}, now)

        assert summary["queued"] == 3
        assert len(_statuses(storage)) == 3
        assert "per run reached" in summary["truncated"][-1]


class TestDrain:
    """Consumer side."""

    def test_groups_one_email_per_recipient_and_type(
        self, queue: NotificationQueue, storage: FilingStorage, notifier: Any,
        make_filing: Any, now: Any,
    ) -> None:
        storage.upsert_user("b@example.com", UserTier.PRO)
        storage.store_filings([make_filing("B"), make_filing("X", docket="17-108")])
        queue.enqueue("b@example.com", "11-42", DigestType.DAILY, now, ["B"])
        queue.enqueue("b@example.com", "17-108", DigestType.DAILY, now, ["X"])
        queue.enqueue("b@example.com", "11-42", DigestType.IMMEDIATE, now, ["B"])

        result = queue.drain(now + timedelta(days=1))

        assert result.sent == 3
        assert result.processed == 3
        subjects = sorted(m["subject"] for m in notifier.sent)
        assert len(subjects) == 2
        assert subjects[0].startswith("DocketWatch: 2 new filings across 2 dockets")
        assert subjects[1].startswith("New Filing Alert: 11-42")
        assert _statuses(storage) == ["sent", "sent", "sent"]

    def test_not_due_items_wait(self, queue: NotificationQueue, notifier: Any, now: Any) -> None:
        queue.enqueue("a@example.com", "11-42", DigestType.DAILY, now, ["1"])

        result = queue.drain(now)

        assert result.processed == 0
        assert notifier.sent == []

    def test_drain_twice_sends_once(
        self, queue: NotificationQueue, storage: FilingStorage, notifier: Any,
        make_filing: Any, now: Any,
    ) -> None:
        storage.store_filings([make_filing("1")])
        queue.enqueue("a@example.com", "11-42", DigestType.IMMEDIATE, now, ["1"])

        first = queue.drain(now)
        second = queue.drain(now)

        assert first.sent == 1
        assert second.processed == 0
        assert len(notifier.sent) == 1

    def test_items_claimed_elsewhere_are_skipped(
        self, queue: NotificationQueue, storage: FilingStorage, notifier: Any,
        make_filing: Any, now: Any,
    ) -> None:
        storage.store_filings([make_filing("1")])
        item = queue.enqueue("a@example.com", "11-42", DigestType.IMMEDIATE, now, ["1"])
        pending = storage.get_due_notifications(now, 100, now - timedelta(minutes=15))
        storage.claim_notifications([item.id], "other-worker", now, now - timedelta(minutes=15))

        # a concurrent drain read the item before the other worker claimed it
        storage.get_due_notifications = lambda *args: pending  # type: ignore[assignment]
        result = queue.drain(now)

        assert result.skipped == 1
        assert notifier.sent == []

    def test_delivery_failure_marks_group_failed(
        self, queue: NotificationQueue, storage: FilingStorage, notifier: Any,
        make_filing: Any, now: Any,
    ) -> None:
        storage.store_filings([make_filing("1")])
        queue.enqueue("bad@example.com", "11-42", DigestType.IMMEDIATE, now, ["1"])
        queue.enqueue("good@example.com", "11-42", DigestType.IMMEDIATE, now, ["1"])
        notifier.fail_for.add("bad@example.com")

        result = queue.drain(now)

        assert result.sent == 1
        assert result.failed == 1
        assert notifier.recipients() == ["good@example.com"]
        failed = storage.get_notification(1)
        assert failed.status == QueueStatus.FAILED
        assert "Mailbox unavailable" in failed.error_message

    def test_missing_filings_marks_failed(self, queue: NotificationQueue, storage: FilingStorage, now: Any) -> None:
        item = queue.enqueue("a@example.com", "11-42", DigestType.IMMEDIATE, now, ["gone"])

        result = queue.drain(now)

        assert result.failed == 1
        assert storage.get_notification(item.id).error_message == (
            "no filings available for notification"
        )

    def test_snapshot_used_when_filing_not_stored(
        self, queue: NotificationQueue, storage: FilingStorage, notifier: Any,
        make_filing: Any, now: Any,
    ) -> None:
        snapshot = make_filing("S1", summary="Snapshot summary text").to_dict()
        queue.enqueue(
            "a@example.com", "11-42", DigestType.SEED_DIGEST, now,
            filing_data={"filings": [snapshot], "tier": "pro"},
        )
        storage.upsert_user("a@example.com", UserTier.PRO)

        result = queue.drain(now)

        assert result.sent == 1
        assert "Comments S1" in notifier.sent[0]["text"]
        assert "Snapshot summary text" in notifier.sent[0]["text"]

    def test_fresh_filing_preferred_over_snapshot(
        self, queue: NotificationQueue, storage: FilingStorage, notifier: Any,
        make_filing: Any, now: Any,
    ) -> None:
        storage.upsert_user("a@example.com", UserTier.PRO)
        storage.store_filings([make_filing("S1", summary="Fresh summary")])
        snapshot = make_filing("S1", summary="Stale summary").to_dict()
        queue.enqueue(
            "a@example.com", "11-42", DigestType.SEED_DIGEST, now,
            filing_data={"filings": [snapshot]},
        )

        queue.drain(now)

        assert "Fresh summary" in notifier.sent[0]["text"]
        assert "Stale summary" not in notifier.sent[0]["text"]

    def test_seed_group_welcomes_every_docket(
        self, queue: NotificationQueue, storage: FilingStorage, notifier: Any,
        make_filing: Any, now: Any,
    ) -> None:
        stored = make_filing("A")
        unstored = make_filing("B", docket="02-278")
        storage.store_filings([stored])
        for filing in (stored, unstored):
            queue.enqueue(
                "a@example.com", filing.docket_number, DigestType.SEED_DIGEST, now,
                filing_data={"filings": [filing.to_dict()]},
            )

        result = queue.drain(now)

        assert result.sent == 2
        [message] = notifier.sent
        assert "11-42" in message["subject"] and "02-278" in message["subject"]
        assert "Comments A" in message["text"]
        assert "Comments B" in message["text"]

    def test_expired_trial_renders_as_free(
        self, queue: NotificationQueue, storage: FilingStorage, notifier: Any,
        make_filing: Any, now: Any,
    ) -> None:
        storage.upsert_user("t@example.com", UserTier.TRIAL, trial_expires_at=now - timedelta(days=1))
        storage.store_filings([make_filing("1", summary="A" * 120)])
        queue.enqueue("t@example.com", "11-42", DigestType.IMMEDIATE, now, ["1"])

        queue.drain(now)

        text = notifier.sent[0]["text"]
        assert "A" * 70 + "... [Upgrade to Pro" in text
        assert "Trial Active" not in text

    def test_delivered_filings_recorded(
        self, queue: NotificationQueue, storage: FilingStorage, make_filing: Any, now: Any
    ) -> None:
        storage.store_filings([make_filing("1"), make_filing("2")])
        queue.enqueue("a@example.com", "11-42", DigestType.IMMEDIATE, now, ["1", "2"])

        queue.drain(now)

        conn = sqlite3.connect(storage.db_path)
        rows = conn.execute(
            "SELECT filing_id, notification_type FROM user_notifications ORDER BY filing_id"
        ).fetchall()
        conn.close()
        assert rows == [("1", "immediate"), ("2", "immediate")]


def test_group_items_preserves_order(queue: NotificationQueue, now: Any) -> None:
    items = [
        queue.enqueue("b@example.com", "11-42", DigestType.IMMEDIATE, now, ["1"]),
        queue.enqueue("a@example.com", "11-42", DigestType.IMMEDIATE, now, ["1"]),
        queue.enqueue("b@example.com", "11-42", DigestType.DAILY, now, ["1"]),
    ]

    groups = NotificationQueue.group_items(items)

    assert list(groups) == ["b@example.com", "a@example.com"]
    assert list(groups["b@example.com"]) == [DigestType.IMMEDIATE, DigestType.DAILY]
