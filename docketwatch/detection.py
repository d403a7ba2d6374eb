"""
DocketWatch change detection

Two-phase detection per docket:

1. quick check of the single newest filing against ``latest_seen_filing_id``
2. on a mismatch, a targeted fetch of the last few filings, deduplicated

When every filing in the targeted fetch is new the docket is treated as
deluged: the burst is recorded as seen but not delivered. Detection never
advances ``latest_seen_filing_id`` for new filings; the caller does that once
they are stored. Any failure degrades to a larger direct fetch
(``fallback``) and then to ``error``; nothing is raised to the caller.
"""

import logging
from datetime import datetime
from typing import List, Optional

from docketwatch.dedup import FilingDeduplicator
from docketwatch.deluge import DelugeGuard
from docketwatch.ecfs import ECFSClient
from docketwatch.models import DetectionResult, DetectionStatus, Filing, FilingStatus
from docketwatch.storage import FilingStorage
from docketwatch.utils import utc_now

logger = logging.getLogger(__name__)


class ChangeDetector:
    """Classifies what changed in a docket since the last check."""

    def __init__(
        self,
        client: ECFSClient,
        storage: FilingStorage,
        deduplicator: FilingDeduplicator,
        deluge_guard: DelugeGuard,
        targeted_fetch_size: int = 7,
        fallback_fetch_size: int = 10,
    ):
        self.client = client
        self.storage = storage
        self.deduplicator = deduplicator
        self.deluge_guard = deluge_guard
        self.targeted_fetch_size = targeted_fetch_size
        self.fallback_fetch_size = fallback_fetch_size

    def detect(self, docket_number: str, now: Optional[datetime] = None) -> DetectionResult:
        """Run detection for one docket; never raises."""
        now = now or utc_now()
        try:
            return self._detect(docket_number, now)
        except Exception as e:
            logger.warning(f"Smart detection failed for {docket_number}, falling back: {e}")
            return self._fallback(docket_number, str(e))

    def _detect(self, docket_number: str, now: datetime) -> DetectionResult:
        if self.deluge_guard.is_suspended(docket_number):
            logger.info(f"⏸️ Docket {docket_number} in deluge mode, skipping")
            return DetectionResult(docket_number, DetectionStatus.DELUGE_ACTIVE)

        latest = self.client.fetch_single_latest_filing(docket_number)
        if latest is None:
            self.storage.mark_checked(docket_number, now)
            return DetectionResult(docket_number, DetectionStatus.NO_FILINGS)

        docket = self.storage.get_docket(docket_number)
        last_seen = docket.latest_seen_filing_id if docket else None
        if latest.id == last_seen:
            self.storage.mark_checked(docket_number, now)
            logger.debug(f"No new filings for {docket_number}")
            return DetectionResult(
                docket_number, DetectionStatus.NO_NEW, latest_filing_id=latest.id
            )

        candidates = self.client.fetch_latest_filings(
            docket_number, self.targeted_fetch_size
        )
        new_filings = self.deduplicator.find_new(candidates)

        if len(new_filings) >= self.targeted_fetch_size:
            self._absorb_burst(docket_number, new_filings, latest.id, now)
            self.deluge_guard.trip(docket_number, now)
            return DetectionResult(
                docket_number, DetectionStatus.DELUGE, latest_filing_id=latest.id
            )

        logger.info(f"📄 {len(new_filings)} new filings for {docket_number}")
        return DetectionResult(
            docket_number,
            DetectionStatus.NEW_FOUND,
            filings=new_filings,
            latest_filing_id=latest.id,
        )

    def _absorb_burst(
        self, docket_number: str, filings: List[Filing], latest_id: str, now: datetime
    ) -> None:
        """Store a deluge burst as seen, without enrichment or notification.

        The burst becomes the docket's baseline so the same filings are not
        counted as new again after the daily reset.
        """
        for filing in filings:
            filing.status = (
                FilingStatus.COMPLETED_RESTRICTED
                if filing.is_restricted
                else FilingStatus.COMPLETED_BASIC
            )
        try:
            self.storage.store_filings(filings)
            self.storage.update_latest_seen(docket_number, latest_id, now)
        except Exception as e:
            logger.error(f"Could not record deluge baseline for {docket_number}: {e}")

    def _fallback(self, docket_number: str, reason: str) -> DetectionResult:
        try:
            candidates = self.client.fetch_latest_filings(
                docket_number, self.fallback_fetch_size
            )
            new_filings = self.deduplicator.find_new(candidates)
        except Exception as e:
            logger.error(f"Fallback detection failed for {docket_number}: {e}")
            self._record_error(docket_number, f"{reason}; fallback: {e}")
            return DetectionResult(docket_number, DetectionStatus.ERROR, error=str(e))

        return DetectionResult(
            docket_number,
            DetectionStatus.FALLBACK,
            filings=new_filings,
            latest_filing_id=candidates[0].id if candidates else None,
            error=reason,
        )

    def _record_error(self, docket_number: str, message: str) -> None:
        try:
            self.storage.record_docket_error(docket_number, message)
        except Exception as e:
            logger.error(f"Could not record error for {docket_number}: {e}")
