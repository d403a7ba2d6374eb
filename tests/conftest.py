"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Set, Tuple
from unittest.mock import patch

import pytest
import requests_mock

from docketwatch.config import Settings
from docketwatch.models import AISummary, Attachment, Filing, FilingStatus
from docketwatch.notifiers.base import NotificationError
from docketwatch.storage import FilingStorage

ECFS_URL = "https://publicapi.fcc.gov/ecfs/filings"

# 14:00 in New York (EDT) on a Thursday
NOW = datetime(2026, 10, 15, 18, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    """Notifier that records every message and can be told to fail."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail_for: Set[str] = set()

    def send(
        self, to_address: str, subject: str, text: str, html: Optional[str] = None
    ) -> str:
        if to_address in self.fail_for:
            raise NotificationError(f"Mailbox unavailable: {to_address}")
        self.sent.append(
            {"to": to_address, "subject": subject, "text": text, "html": html}
        )
        return f"msg-{len(self.sent)}"

    def recipients(self) -> List[str]:
        return [message["to"] for message in self.sent]


class FakeECFS:
    """Serves canned ECFS records per docket and records every request."""

    def __init__(self, mocker: requests_mock.Mocker) -> None:
        self.records: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, int]] = []
        self.failing: Set[str] = set()
        mocker.get(ECFS_URL, json=self._respond)

    def _respond(self, request: Any, context: Any) -> Dict[str, Any]:
        docket = request.qs["proceedings.name"][0]
        limit = int(request.qs["limit"][0])
        self.calls.append((docket, limit))
        if docket in self.failing:
            context.status_code = 503
            return {"error": "service unavailable"}
        return {"filing": self.records.get(docket, [])[:limit]}

    def limits_for(self, docket: str) -> List[int]:
        return [limit for called, limit in self.calls if called == docket]


def build_ecfs_record(
    filing_id: str,
    docket: str = "11-42",
    filename: Optional[str] = None,
    filer: str = "Acme Broadband LLC",
    date: str = "2026-10-14T15:30:00Z",
    restricted: bool = False,
) -> Dict[str, Any]:
    """Raw ECFS record shaped like the public API response."""
    record: Dict[str, Any] = {
        "id_submission": filing_id,
        "proceedings": [{"name": docket}],
        "filers": [{"name": filer}],
        "submissiontype": {"description": "COMMENT", "short": "COMMENT"},
        "date_disseminated": date,
        "documents": [
            {
                "filename": filename or f"Comments {filing_id}.pdf",
                "src": f"https://docs.fcc.gov/public/attachments/{filing_id}.pdf",
            }
        ],
    }
    if restricted:
        record["viewingstatus"] = {"description": "Restricted Proprietary"}
    return record


def build_filing(
    filing_id: str,
    docket: str = "11-42",
    title: Optional[str] = None,
    summary: Optional[str] = None,
    date: Optional[datetime] = None,
    restricted: bool = False,
) -> Filing:
    """Normalized filing, optionally already enriched."""
    return Filing(
        id=filing_id,
        docket_number=docket,
        title=title or f"Comments {filing_id}",
        author="Acme Broadband LLC",
        filing_type="COMMENT",
        date_received=date or datetime(2026, 10, 14, 15, 30, tzinfo=timezone.utc),
        filing_url=f"https://www.fcc.gov/ecfs/filing/{filing_id}",
        attachments=[
            Attachment(
                filename=f"{filing_id}.pdf",
                src=f"https://docs.fcc.gov/public/attachments/{filing_id}.pdf",
                file_type="pdf",
                downloadable=True,
            )
        ],
        is_restricted=restricted,
        status=FilingStatus.COMPLETED_ENHANCED if summary else FilingStatus.PENDING,
        ai_summary=AISummary(summary=summary, key_points=["Point one"]) if summary else None,
    )


@pytest.fixture
def storage() -> Generator[FilingStorage, None, None]:
    """Temporary SQLite storage."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield FilingStorage(db_path)

    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def fake_ecfs() -> Generator[FakeECFS, None, None]:
    """ECFS API double backed by requests_mock."""
    with requests_mock.Mocker() as m:
        yield FakeECFS(m)


@pytest.fixture
def ecfs_record() -> Callable[..., Dict[str, Any]]:
    return build_ecfs_record


@pytest.fixture
def make_filing() -> Callable[..., Filing]:
    return build_filing


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    env = {
        "ECFS_API_KEY": "test-ecfs-key",
        "RESEND_API_KEY": "re_test",
        "EMAIL_FROM_ADDRESS": "alerts@docketwatch.test",
    }
    with patch.dict(os.environ, env, clear=True):
        return Settings(
            _env_file=None,
            database_file=str(tmp_path / "docketwatch.db"),
            docket_delay_seconds=0,
            enrichment_dispatch_delay_seconds=0,
        )
