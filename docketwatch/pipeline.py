"""
DocketWatch monitoring pipeline

One periodic cycle walks every monitored docket sequentially (with a delay
between dockets): detect, enrich, store. It then queues notifications for
the filings stored during the cycle and drains whatever is due. The
on-demand trigger runs the same stages for a single docket with an explicit
filing count.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from docketwatch.circuit_breaker import CircuitBreaker
from docketwatch.config import Settings
from docketwatch.dedup import FilingDeduplicator
from docketwatch.deluge import DelugeGuard
from docketwatch.detection import ChangeDetector
from docketwatch.digest import DigestRenderer
from docketwatch.ecfs import ECFSClient, SourceError
from docketwatch.enrichment import FilingEnricher
from docketwatch.extraction import DocumentExtractor
from docketwatch.models import DetectionResult, DetectionStatus, Filing
from docketwatch.notification_queue import NotificationQueue, SafetyLimits
from docketwatch.notifiers.base import Notifier
from docketwatch.scheduling import operational_date
from docketwatch.seeding import SubscriptionSeeder
from docketwatch.storage import FilingStorage, create_storage
from docketwatch.summarizer import GeminiSummarizer
from docketwatch.utils import is_valid_docket_number, utc_now

logger = logging.getLogger(__name__)

ADVANCING_STATUSES = (DetectionStatus.NEW_FOUND, DetectionStatus.FALLBACK)


@dataclass
class DocketOutcome:
    """What one docket contributed to a cycle."""

    docket_number: str
    status: str
    new_filings: int = 0
    stored_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None


class MonitoringPipeline:
    """Sequential driver for detection, enrichment, storage and delivery."""

    def __init__(
        self,
        storage: FilingStorage,
        client: ECFSClient,
        detector: ChangeDetector,
        enricher: FilingEnricher,
        queue: NotificationQueue,
        deluge_guard: DelugeGuard,
        seeder: Optional[SubscriptionSeeder] = None,
        timezone_name: str = "America/New_York",
        docket_delay_seconds: float = 1.0,
        manual_max_filings: int = 50,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.storage = storage
        self.client = client
        self.detector = detector
        self.enricher = enricher
        self.queue = queue
        self.deluge_guard = deluge_guard
        self.seeder = seeder
        self.timezone_name = timezone_name
        self.docket_delay_seconds = docket_delay_seconds
        self.manual_max_filings = manual_max_filings
        self._sleep = sleep

    def _enrich_and_store(self, filings: List[Filing]) -> List[str]:
        if not filings:
            return []
        self.enricher.enrich_batch(filings)
        return self.storage.store_filings(filings)

    def process_docket(self, docket_number: str, now: datetime) -> DocketOutcome:
        """Detect, enrich and store new filings for one docket."""
        result: DetectionResult = self.detector.detect(docket_number, now)
        outcome = DocketOutcome(
            docket_number=docket_number,
            status=result.status.value,
            new_filings=len(result.filings),
            error=result.error,
        )
        if result.filings:
            outcome.stored_ids = self._enrich_and_store(result.filings)
            logger.info(
                f"Stored {len(outcome.stored_ids)} of {len(result.filings)} new filings "
                f"for {docket_number}"
            )
        # advanced only after the new filings are stored
        if result.status in ADVANCING_STATUSES and result.latest_filing_id:
            self.storage.update_latest_seen(docket_number, result.latest_filing_id, now)
        return outcome

    def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Run one periodic monitoring cycle over every monitored docket."""
        now = now or utc_now()
        started = time.monotonic()
        logger.info("🔍 Starting monitoring cycle")

        lifted = self.deluge_guard.reset_if_new_day(
            operational_date(now, self.timezone_name)
        )

        seed_summary: Dict[str, Any] = {}
        if self.seeder is not None:
            seed_summary = self.seeder.seed_pending(now)

        outcomes: List[DocketOutcome] = []
        dockets = self.storage.list_monitored_dockets()
        for index, docket in enumerate(dockets):
            if index > 0 and self.docket_delay_seconds > 0:
                self._sleep(self.docket_delay_seconds)
            try:
                outcomes.append(self.process_docket(docket.docket_number, now))
            except Exception as e:
                logger.error(f"Processing failed for {docket.docket_number}: {e}")
                outcomes.append(
                    DocketOutcome(
                        docket.docket_number, DetectionStatus.ERROR.value, error=str(e)
                    )
                )

        new_ids = {o.docket_number: o.stored_ids for o in outcomes if o.stored_ids}
        queue_summary = self.queue.queue_for_new_filings(new_ids, now)
        drain_result = self.queue.drain(now)

        status_counts: Dict[str, int] = {}
        for outcome in outcomes:
            status_counts[outcome.status] = status_counts.get(outcome.status, 0) + 1

        errors = [f"{o.docket_number}: {o.error}" for o in outcomes if o.error]
        summary = {
            "status": "success" if not errors and not drain_result.errors else "partial",
            "timestamp": now.isoformat(),
            "dockets_checked": len(outcomes),
            "detection": status_counts,
            "new_filings": sum(len(ids) for ids in new_ids.values()),
            "deluge_lifted": lifted or [],
            "seeded": seed_summary.get("seeded", 0),
            "queued": queue_summary["queued"],
            "truncated": queue_summary["truncated"],
            "delivery": drain_result.to_dict(),
            "errors": errors,
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
        self._log_run("monitoring", summary)
        logger.info(
            f"✅ Cycle complete: {summary['dockets_checked']} dockets, "
            f"{summary['new_filings']} new filings, {summary['queued']} queued, "
            f"{drain_result.sent} sent"
        )
        return summary

    def trigger(
        self, docket_number: str, count: int = 10, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """On-demand run for one docket with an explicit filing count.

        The quick check is skipped; the latest ``count`` filings (capped at
        ``manual_max_filings``) are fetched, deduplicated, enriched, stored and
        queued, and due notifications are drained.
        """
        now = now or utc_now()
        if not is_valid_docket_number(docket_number):
            raise ValueError(f"Invalid docket number: {docket_number}")

        limit = max(1, min(count, self.manual_max_filings))
        self.storage.ensure_docket(docket_number)
        logger.info(f"Manual trigger for {docket_number} (limit {limit})")

        try:
            candidates = self.client.fetch_latest_filings(docket_number, limit)
        except SourceError as e:
            logger.error(f"Manual trigger fetch failed for {docket_number}: {e}")
            summary = {
                "status": "error",
                "error": str(e),
                "docket": docket_number,
                "timestamp": now.isoformat(),
            }
            self._log_run("manual", summary)
            return summary

        new_filings = self.detector.deduplicator.find_new(candidates)
        stored_ids = self._enrich_and_store(new_filings)
        if candidates:
            self.storage.update_latest_seen(docket_number, candidates[0].id, now)

        queue_summary = self.queue.queue_for_new_filings({docket_number: stored_ids}, now)
        drain_result = self.queue.drain(now)

        summary = {
            "status": "success",
            "docket": docket_number,
            "timestamp": now.isoformat(),
            "fetched": len(candidates),
            "new_filings": len(stored_ids),
            "queued": queue_summary["queued"],
            "delivery": drain_result.to_dict(),
        }
        self._log_run("manual", summary)
        return summary

    def _log_run(self, run_type: str, summary: Dict[str, Any]) -> None:
        try:
            self.storage.log_run(run_type, summary.get("status", "unknown"), summary)
        except Exception as e:
            logger.warning(f"Could not write run health record: {e}")


def build_pipeline(
    config: Settings, notifier: Notifier, storage: Optional[FilingStorage] = None
) -> MonitoringPipeline:
    """Assemble the pipeline from settings."""
    storage = storage or create_storage(config.database_url, config.database_file)
    client = ECFSClient(
        api_key=config.ecfs_api_key or "",
        base_url=config.ecfs_base_url,
        timeout=config.http_timeout_seconds,
    )
    renderer = DigestRenderer(
        brand_name=config.brand_name,
        app_url=config.app_url,
        preview_chars=config.free_preview_chars,
    )
    deluge_guard = DelugeGuard(storage, notifier, renderer)
    detector = ChangeDetector(
        client,
        storage,
        FilingDeduplicator(storage),
        deluge_guard,
        targeted_fetch_size=config.targeted_fetch_size,
        fallback_fetch_size=config.fallback_fetch_size,
    )

    extractor = DocumentExtractor(
        api_key=config.jina_api_key,
        base_url=config.jina_base_url,
        stream_timeout=config.extraction_stream_timeout,
        simple_timeout=config.extraction_simple_timeout,
        basic_timeout=config.extraction_basic_timeout,
        stream_min_chars=config.extraction_stream_min_chars,
        simple_min_chars=config.extraction_simple_min_chars,
        basic_min_chars=config.extraction_basic_min_chars,
    )
    summarizer = None
    if config.summarization_enabled:
        summarizer = GeminiSummarizer(
            api_key=config.gemini_api_key or "",
            breaker=CircuitBreaker(
                "gemini",
                failure_threshold=config.breaker_failure_threshold,
                cooldown_seconds=config.breaker_cooldown_seconds,
            ),
            model=config.gemini_model,
            base_url=config.gemini_base_url,
            char_budget=config.prompt_char_budget,
            timeout=config.http_timeout_seconds,
        )
    else:
        logger.warning("GEMINI_API_KEY not set; filings will be delivered without AI summaries")

    enricher = FilingEnricher(
        extractor,
        summarizer,
        max_workers=config.enrichment_max_workers,
        dispatch_delay_seconds=config.enrichment_dispatch_delay_seconds,
    )
    queue = NotificationQueue(
        storage,
        notifier,
        renderer,
        timezone_name=config.timezone,
        daily_hour=config.daily_send_hour,
        weekly_weekday=config.weekly_send_weekday,
        weekly_hour=config.weekly_send_hour,
        page_size=config.queue_page_size,
        claim_timeout_minutes=config.claim_timeout_minutes,
        limits=SafetyLimits(
            max_notifications_per_run=config.max_notifications_per_run,
            max_dockets_per_user=config.max_dockets_per_user,
            max_filings_per_notification=config.max_filings_per_notification,
        ),
    )
    seeder = SubscriptionSeeder(storage, client, queue, enricher)

    return MonitoringPipeline(
        storage,
        client,
        detector,
        enricher,
        queue,
        deluge_guard,
        seeder=seeder,
        timezone_name=config.timezone,
        docket_delay_seconds=config.docket_delay_seconds,
        manual_max_filings=config.manual_max_filings,
    )
