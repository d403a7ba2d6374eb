"""
DocketWatch filing enrichment

Per filing: extract attachment text, then summarize with the AI provider.
Restricted filings skip both and get a fixed response. Batches run on a
small thread pool with a fixed delay between dispatches; one filing's
failure is recorded in its outcome and never aborts the batch.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from docketwatch.extraction import DocumentExtractor
from docketwatch.models import Attachment, Filing, FilingStatus
from docketwatch.summarizer import GeminiSummarizer, restricted_summary
from docketwatch.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentOutcome:
    """Per-filing result of an enrichment batch."""

    filing_id: str
    status: FilingStatus
    documents_processed: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != FilingStatus.FAILED


def combine_document_text(attachments: List[Attachment]) -> str:
    """Join extracted attachment texts under filename headers."""
    sections = []
    for attachment in attachments:
        if attachment.text:
            sections.append(f"=== {attachment.filename} ===\n{attachment.text}")
    return "\n\n".join(sections)


class FilingEnricher:
    """Runs extraction and summarization for new filings."""

    def __init__(
        self,
        extractor: Optional[DocumentExtractor] = None,
        summarizer: Optional[GeminiSummarizer] = None,
        max_workers: int = 2,
        dispatch_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.extractor = extractor
        self.summarizer = summarizer
        self.max_workers = max(1, max_workers)
        self.dispatch_delay_seconds = dispatch_delay_seconds
        self._sleep = sleep

    def enrich(self, filing: Filing) -> EnrichmentOutcome:
        """Enrich one filing in place."""
        try:
            return self._enrich(filing)
        except Exception as e:
            logger.error(f"Enrichment failed for filing {filing.id}: {e}")
            filing.status = FilingStatus.FAILED
            filing.processed_at = utc_now()
            return EnrichmentOutcome(filing.id, FilingStatus.FAILED, error=str(e))

    def _enrich(self, filing: Filing) -> EnrichmentOutcome:
        if filing.is_restricted:
            filing.ai_summary = restricted_summary()
            filing.status = FilingStatus.COMPLETED_RESTRICTED
            filing.processed_at = utc_now()
            logger.info(f"🔒 Filing {filing.id} is restricted, skipping analysis")
            return EnrichmentOutcome(filing.id, filing.status)

        documents: List[Attachment] = []
        if self.extractor is not None:
            documents = self.extractor.process_filing_documents(filing)

        if self.summarizer is not None:
            filing.ai_summary = self.summarizer.summarize(
                filing, combine_document_text(documents)
            )

        enhanced = bool(
            documents and filing.ai_summary is not None and not filing.ai_summary.degraded
        )
        filing.status = (
            FilingStatus.COMPLETED_ENHANCED if enhanced else FilingStatus.COMPLETED_BASIC
        )
        filing.processed_at = utc_now()
        return EnrichmentOutcome(filing.id, filing.status, documents_processed=len(documents))

    def enrich_batch(self, filings: List[Filing]) -> List[EnrichmentOutcome]:
        """Enrich filings on a bounded pool; outcomes follow input order."""
        if not filings:
            return []

        futures: List[Tuple[Filing, Future]] = []
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="enrich"
        ) as pool:
            for index, filing in enumerate(filings):
                if index > 0 and self.dispatch_delay_seconds > 0:
                    self._sleep(self.dispatch_delay_seconds)
                futures.append((filing, pool.submit(self.enrich, filing)))

        outcomes: List[EnrichmentOutcome] = []
        for filing, future in futures:
            try:
                outcomes.append(future.result())
            except Exception as e:
                logger.error(f"Enrichment worker crashed for {filing.id}: {e}")
                filing.status = FilingStatus.FAILED
                outcomes.append(EnrichmentOutcome(filing.id, FilingStatus.FAILED, error=str(e)))

        succeeded = sum(1 for o in outcomes if o.ok)
        logger.info(f"Enriched {succeeded}/{len(outcomes)} filings")
        return outcomes
