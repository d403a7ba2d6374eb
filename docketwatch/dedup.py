"""Filing deduplication against persisted storage."""

import logging
from typing import List

from docketwatch.models import Filing
from docketwatch.storage import FilingStorage

logger = logging.getLogger(__name__)


class FilingDeduplicator:
    """Filters candidate filings down to ids not yet stored."""

    def __init__(self, storage: FilingStorage):
        self.storage = storage

    def find_new(self, candidates: List[Filing]) -> List[Filing]:
        """Return candidates whose ids are not in storage, preserving order.

        The existence check is a single batched query. If storage cannot be
        queried every candidate is treated as new; the insert-if-absent write
        is the backstop against duplicates.
        """
        if not candidates:
            return []

        try:
            existing = self.storage.existing_filing_ids(f.id for f in candidates)
        except Exception as e:
            logger.error(
                f"Duplicate check failed, treating {len(candidates)} filings as new: {e}"
            )
            existing = set()

        seen = set()
        new_filings = []
        for filing in candidates:
            if filing.id in existing or filing.id in seen:
                continue
            seen.add(filing.id)
            new_filings.append(filing)

        logger.debug(f"{len(new_filings)} of {len(candidates)} candidate filings are new")
        return new_filings
