"""
DocketWatch ECFS client - FCC Electronic Comment Filing System source

Queries the public ECFS filings API by proceeding number, newest first, and
normalizes raw records into ``Filing`` objects. The client never retries: a
failed request raises ``SourceError`` and the caller decides how to degrade.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import requests

from docketwatch.models import Attachment, Filing
from docketwatch.utils import clean_text, parse_timestamp

logger = logging.getLogger(__name__)

FILING_URL_TEMPLATE = "https://www.fcc.gov/ecfs/filing/{filing_id}"
UNRESTRICTED_MARKERS = ("unrestricted", "public")
RESTRICTED_MARKERS = ("confidential", "restricted", "sealed", "private")


class SourceError(Exception):
    """Raised when the filing source API cannot be queried."""


def _first_name(entries: Any) -> str:
    """Return the cleaned ``name`` of the first entry in a list of dicts."""
    if isinstance(entries, list) and entries:
        first = entries[0]
        if isinstance(first, dict):
            return clean_text(first.get("name"))
    return ""


def is_filing_restricted(raw: Dict[str, Any]) -> bool:
    """Decide whether the source marks a filing as confidential.

    ``viewingstatus`` may be a single object or a list of objects, each with a
    ``description``. An explicit unrestricted/public marker wins.
    """
    status = raw.get("viewingstatus")
    if not status:
        return False

    entries = status if isinstance(status, list) else [status]
    descriptions = [
        str(entry.get("description", "")).lower()
        for entry in entries
        if isinstance(entry, dict)
    ]

    if any(d in UNRESTRICTED_MARKERS for d in descriptions):
        return False
    return any(
        marker in description
        for description in descriptions
        for marker in RESTRICTED_MARKERS
    )


def infer_file_type(filename: str, src: Optional[str] = None) -> str:
    """Infer a lowercase file type from the filename or source URL extension."""
    for candidate in (filename, src or ""):
        base = candidate.split("?", 1)[0].rstrip("/")
        _, ext = os.path.splitext(base)
        if ext:
            return ext.lstrip(".").lower()
    return "unknown"


def parse_attachments(raw: Dict[str, Any], restricted: bool) -> List[Attachment]:
    """Build attachment descriptors from a raw record's ``documents``."""
    attachments: List[Attachment] = []
    for doc in raw.get("documents") or []:
        if not isinstance(doc, dict):
            continue
        filename = clean_text(doc.get("filename")) or "document"
        src = doc.get("src") or None
        attachments.append(
            Attachment(
                filename=filename,
                src=src,
                description=clean_text(doc.get("description")),
                file_type=infer_file_type(filename, src),
                downloadable=bool(src and "fcc.gov" in src and not restricted),
                is_confidential=restricted,
            )
        )
    return attachments


def parse_filing(raw: Dict[str, Any], docket_number: str) -> Optional[Filing]:
    """Normalize one raw ECFS record; returns None for records without an id."""
    filing_id = raw.get("id_submission")
    if not filing_id:
        logger.warning(f"Skipping ECFS record without id_submission in {docket_number}")
        return None

    documents = raw.get("documents") or []
    first_doc = documents[0] if documents and isinstance(documents[0], dict) else {}

    title = (
        clean_text(first_doc.get("filename"))
        or clean_text(raw.get("delegated_authority_number"))
        or clean_text(raw.get("brief_comment_summary"))
        or clean_text(raw.get("description_of_filing"))
        or "Untitled Filing"
    )
    author = (
        _first_name(raw.get("filers"))
        or _first_name(raw.get("authors"))
        or _first_name(raw.get("lawfirms"))
        or _first_name(raw.get("bureaus"))
        or "Unknown Filer"
    )

    submission_type = raw.get("submissiontype") or {}
    filing_type = (
        clean_text(submission_type.get("description"))
        or clean_text(submission_type.get("short"))
        or clean_text(raw.get("type_of_filing"))
        or "unknown"
    )

    date_received = (
        parse_timestamp(raw.get("date_disseminated"))
        or parse_timestamp(raw.get("date_submission"))
        or parse_timestamp(raw.get("date_received"))
    )

    restricted = is_filing_restricted(raw)

    return Filing(
        id=str(filing_id),
        docket_number=docket_number,
        title=title,
        author=author,
        filing_type=filing_type,
        date_received=date_received,
        filing_url=FILING_URL_TEMPLATE.format(filing_id=filing_id),
        attachments=parse_attachments(raw, restricted),
        is_restricted=restricted,
        raw_data=raw,
    )


class ECFSClient:
    """Client for the FCC ECFS public filings API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://publicapi.fcc.gov/ecfs/filings",
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "User-Agent": "DocketWatch/1.0 (FCC Docket Monitor)",
                "Accept": "application/json",
            }
        )

    def fetch_latest_filings(self, docket_number: str, limit: int) -> List[Filing]:
        """Fetch the ``limit`` most recent filings of a docket, newest first.

        Raises:
            SourceError: On HTTP failure, timeout, or an undecodable response
        """
        params = {
            "api_key": self.api_key,
            "proceedings.name": docket_number,
            "limit": limit,
            "sort": "date_disseminated,DESC",
        }

        try:
            response = self.session.get(
                self.base_url, params=params, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise SourceError(f"ECFS request failed for {docket_number}: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise SourceError(
                f"ECFS returned invalid JSON for {docket_number}: {exc}"
            ) from exc

        records = data.get("filing") if isinstance(data, dict) else None
        if records is None:
            raise SourceError(f"ECFS response for {docket_number} has no 'filing' key")

        filings: List[Filing] = []
        for raw in records:
            if not isinstance(raw, dict):
                continue
            try:
                filing = parse_filing(raw, docket_number)
            except Exception as e:
                logger.warning(f"Skipping malformed ECFS record in {docket_number}: {e}")
                continue
            if filing:
                filings.append(filing)

        logger.debug(f"Fetched {len(filings)} filings for {docket_number} (limit {limit})")
        return filings

    def fetch_single_latest_filing(self, docket_number: str) -> Optional[Filing]:
        """Quick check: fetch only the newest filing of a docket."""
        filings = self.fetch_latest_filings(docket_number, limit=1)
        return filings[0] if filings else None
