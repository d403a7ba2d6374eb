"""Tests for the monitoring pipeline driver."""

import sqlite3
from datetime import timedelta
from typing import Any, List
from unittest.mock import patch

import pytest

from docketwatch.config import Settings
from docketwatch.deluge import LAST_RESET_KEY
from docketwatch.models import DigestType, DocketStatus, FilingStatus
from docketwatch.pipeline import MonitoringPipeline, build_pipeline
from docketwatch.storage import FilingStorage

OLDER = ["O1", "O2", "O3", "O4"]


@pytest.fixture
def pipeline(test_settings: Settings, notifier: Any, storage: FilingStorage) -> MonitoringPipeline:
    return build_pipeline(test_settings, notifier, storage=storage)


def _stats(storage: FilingStorage, now: Any) -> dict:
    return storage.get_queue_stats(now - timedelta(days=1))


class TestRunCycle:
    """Periodic cycle."""

    def test_end_to_end_new_filings(
        self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any,
        ecfs_record: Any, make_filing: Any, notifier: Any, now: Any,
    ) -> None:
        storage.ensure_docket("11-42", latest_seen_filing_id="A")
        storage.store_filings([make_filing(i) for i in ["A"] + OLDER])
        storage.add_subscription("a@example.com", "11-42", DigestType.IMMEDIATE, needs_seed=False)
        storage.add_subscription("b@example.com", "11-42", DigestType.DAILY, needs_seed=False)
        fake_ecfs.records["11-42"] = [ecfs_record(i) for i in ["B", "C", "A"] + OLDER]

        summary = pipeline.run_cycle(now)

        assert summary["status"] == "success"
        assert summary["detection"] == {"new_found": 1}
        assert summary["new_filings"] == 2
        assert summary["queued"] == 2
        assert storage.get_docket("11-42").latest_seen_filing_id == "B"
        assert {f.id for f in storage.get_filings(["B", "C"])} == {"B", "C"}
        assert all(
            f.status == FilingStatus.COMPLETED_BASIC for f in storage.get_filings(["B", "C"])
        )

        # immediate goes out now, daily waits for 13:00 tomorrow
        assert notifier.recipients() == ["a@example.com"]
        assert summary["delivery"]["sent"] == 1
        assert _stats(storage, now)["pending_total"] == 1

    def test_repeat_cycle_is_quiet(
        self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any,
        ecfs_record: Any, make_filing: Any, notifier: Any, now: Any,
    ) -> None:
        storage.ensure_docket("11-42", latest_seen_filing_id="A")
        storage.store_filings([make_filing("A")])
        storage.add_subscription("a@example.com", "11-42", DigestType.IMMEDIATE, needs_seed=False)
        fake_ecfs.records["11-42"] = [ecfs_record("B"), ecfs_record("A")]

        pipeline.run_cycle(now)
        second = pipeline.run_cycle(now + timedelta(minutes=30))

        assert second["detection"] == {"no_new": 1}
        assert second["new_filings"] == 0
        assert len(notifier.sent) == 1

    def test_sequential_with_delay_and_isolated_failures(
        self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any,
        ecfs_record: Any, now: Any,
    ) -> None:
        delays: List[float] = []
        pipeline._sleep = delays.append
        pipeline.docket_delay_seconds = 2.0
        for docket in ("02-278", "11-42", "17-108"):
            storage.ensure_docket(docket)
        fake_ecfs.failing.add("11-42")
        fake_ecfs.records["17-108"] = [ecfs_record("X", docket="17-108")]

        summary = pipeline.run_cycle(now)

        assert delays == [2.0, 2.0]
        assert summary["dockets_checked"] == 3
        assert summary["detection"] == {"no_filings": 1, "error": 1, "new_found": 1}
        assert summary["status"] == "partial"
        assert any(e.startswith("11-42") for e in summary["errors"])

    def test_daily_reset_lifts_deluge_once(
        self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any, now: Any
    ) -> None:
        storage.ensure_docket("11-42")
        storage.set_deluged("11-42", now - timedelta(hours=20))

        first = pipeline.run_cycle(now)
        storage.set_deluged("11-42", now)
        second = pipeline.run_cycle(now + timedelta(hours=1))

        assert first["deluge_lifted"] == ["11-42"]
        assert storage.get_state(LAST_RESET_KEY) == "2026-10-15"
        assert second["deluge_lifted"] == []
        assert second["detection"] == {"deluge_active": 1}
        assert storage.get_docket("11-42").status == DocketStatus.DELUGED

    def test_deluge_burst_not_replayed_after_reset(
        self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any,
        ecfs_record: Any, make_filing: Any, notifier: Any, now: Any,
    ) -> None:
        storage.ensure_docket("11-42", latest_seen_filing_id="A")
        storage.store_filings([make_filing("A")])
        storage.add_subscription("a@example.com", "11-42", DigestType.IMMEDIATE, needs_seed=False)
        fake_ecfs.records["11-42"] = [ecfs_record(f"N{i}") for i in range(10)] + [ecfs_record("A")]

        day1 = pipeline.run_cycle(now)
        day2 = pipeline.run_cycle(now + timedelta(days=1))
        fake_ecfs.records["11-42"].insert(0, ecfs_record("N10"))
        day3 = pipeline.run_cycle(now + timedelta(days=2))

        assert day1["detection"] == {"deluge": 1}
        assert day1["new_filings"] == 0
        assert day2["deluge_lifted"] == ["11-42"]
        assert day2["detection"] == {"no_new": 1}
        assert day3["detection"] == {"new_found": 1}
        assert day3["new_filings"] == 1
        assert [m["subject"] for m in notifier.sent][0] == "High Activity Alert - Docket 11-42"
        assert [m["subject"] for m in notifier.sent].count("High Activity Alert - Docket 11-42") == 1
        assert len(notifier.sent) == 2

    def test_failed_store_is_retried_next_cycle(
        self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any,
        ecfs_record: Any, make_filing: Any, notifier: Any, now: Any,
    ) -> None:
        storage.ensure_docket("11-42", latest_seen_filing_id="A")
        storage.store_filings([make_filing("A")])
        storage.add_subscription("a@example.com", "11-42", DigestType.IMMEDIATE, needs_seed=False)
        fake_ecfs.records["11-42"] = [ecfs_record(i) for i in ["B", "C", "A"]]
        locked = sqlite3.OperationalError("database is locked")
        with patch.object(storage, "store_filings", side_effect=locked):
            first = pipeline.run_cycle(now)
        assert storage.get_docket("11-42").latest_seen_filing_id == "A"

        second = pipeline.run_cycle(now + timedelta(minutes=30))

        assert first["errors"] == ["11-42: database is locked"]
        assert storage.get_docket("11-42").latest_seen_filing_id == "B"
        assert second["detection"] == {"new_found": 1}
        assert second["new_filings"] == 2
        assert {f.id for f in storage.get_filings(["B", "C"])} == {"B", "C"}
        assert notifier.recipients() == ["a@example.com"]

    def test_new_subscription_seeded(
        self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any,
        ecfs_record: Any, notifier: Any, now: Any,
    ) -> None:
        fake_ecfs.records["17-108"] = [ecfs_record("N1", docket="17-108")]
        storage.add_subscription("new@example.com", "17-108", DigestType.DAILY)

        summary = pipeline.run_cycle(now)

        assert summary["seeded"] == 1
        assert [m["subject"] for m in notifier.sent] == [
            "Welcome to DocketWatch! Your monitoring for docket 17-108 starts now"
        ]
        # the seed filing is the baseline, not a new filing
        assert summary["new_filings"] == 0

    def test_seeded_on_two_dockets_gets_one_welcome(
        self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any,
        ecfs_record: Any, notifier: Any, now: Any,
    ) -> None:
        fake_ecfs.records["17-108"] = [ecfs_record("N1", docket="17-108")]
        fake_ecfs.records["02-278"] = [ecfs_record("M1", docket="02-278")]
        storage.add_subscription("new@example.com", "17-108", DigestType.DAILY)
        storage.add_subscription("new@example.com", "02-278", DigestType.DAILY)

        summary = pipeline.run_cycle(now)

        assert summary["seeded"] == 2
        [message] = notifier.sent
        assert message["subject"].startswith("Welcome to DocketWatch! Your monitoring for dockets ")
        assert "17-108" in message["subject"] and "02-278" in message["subject"]
        assert "Comments N1" in message["text"]
        assert "Comments M1" in message["text"]

    def test_run_is_logged(self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any, now: Any) -> None:
        pipeline.run_cycle(now)

        [entry] = storage.get_recent_runs(1)
        assert entry["run_type"] == "monitoring"
        assert entry["status"] == "success"


class TestTrigger:
    """On-demand runs."""

    def test_trigger_fetches_requested_count(
        self, pipeline: MonitoringPipeline, storage: FilingStorage, fake_ecfs: Any,
        ecfs_record: Any, notifier: Any, now: Any,
    ) -> None:
        storage.add_subscription("a@example.com", "11-42", DigestType.IMMEDIATE, needs_seed=False)
        fake_ecfs.records["11-42"] = [ecfs_record(f"F{i}") for i in range(8)]

        summary = pipeline.trigger("11-42", 5, now)

        assert fake_ecfs.limits_for("11-42") == [5]
        assert summary["status"] == "success"
        assert summary["fetched"] == 5
        assert summary["new_filings"] == 5
        assert storage.get_docket("11-42").latest_seen_filing_id == "F0"
        assert len(notifier.sent) == 1
        assert storage.get_recent_runs(1)[0]["run_type"] == "manual"

    def test_count_is_capped(self, pipeline: MonitoringPipeline, fake_ecfs: Any, now: Any) -> None:
        pipeline.trigger("11-42", 500, now)
        pipeline.trigger("11-42", 0, now)

        assert fake_ecfs.limits_for("11-42") == [50, 1]

    def test_invalid_docket_rejected(self, pipeline: MonitoringPipeline) -> None:
        with pytest.raises(ValueError, match="Invalid docket"):
            pipeline.trigger("FCC 11-42", 5)

    def test_source_error_reported(self, pipeline: MonitoringPipeline, fake_ecfs: Any, now: Any) -> None:
        fake_ecfs.failing.add("11-42")

        summary = pipeline.trigger("11-42", 5, now)

        assert summary["status"] == "error"
        assert "11-42" in summary["error"]
