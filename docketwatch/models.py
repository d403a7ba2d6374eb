"""
DocketWatch data model

Dockets, filings, attachments, AI summaries and notification queue items,
plus the closed status vocabularies shared by the pipeline stages.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from docketwatch.utils import parse_timestamp


class DocketStatus(Enum):
    """Monitoring status of a tracked proceeding."""

    ACTIVE = "active"
    DELUGED = "deluged"
    PAUSED = "paused"
    ERROR = "error"


class DetectionStatus(Enum):
    """Outcome of one change-detection pass over a docket."""

    NO_FILINGS = "no_filings"
    NO_NEW = "no_new"
    DELUGE_ACTIVE = "deluge_active"
    DELUGE = "deluge"
    NEW_FOUND = "new_found"
    FALLBACK = "fallback"
    ERROR = "error"


class FilingStatus(Enum):
    """Enrichment processing status of a filing."""

    PENDING = "pending"
    COMPLETED_ENHANCED = "completed_enhanced"
    COMPLETED_BASIC = "completed_basic"
    COMPLETED_RESTRICTED = "completed_restricted"
    FAILED = "failed"


class DigestType(Enum):
    """Delivery cadence of a queued notification."""

    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"
    SEED_DIGEST = "seed_digest"


class QueueStatus(Enum):
    """Lifecycle of a notification queue item."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class UserTier(Enum):
    """Subscriber content tier."""

    FREE = "free"
    TRIAL = "trial"
    PRO = "pro"


@dataclass
class Docket:
    """A tracked proceeding."""

    docket_number: str
    status: DocketStatus = DocketStatus.ACTIVE
    latest_seen_filing_id: Optional[str] = None
    consecutive_error_count: int = 0
    subscriber_count: int = 0
    deluged_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_deluged(self) -> bool:
        return self.status == DocketStatus.DELUGED


@dataclass
class Attachment:
    """Document descriptor attached to a filing."""

    filename: str
    src: Optional[str] = None
    description: str = ""
    file_type: str = "unknown"
    downloadable: bool = False
    is_confidential: bool = False
    extraction_status: Optional[str] = None  # processed, failed, skipped
    extraction_strategy: Optional[str] = None
    extraction_error: Optional[str] = None
    text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert attachment to dictionary for storage."""
        return {
            "filename": self.filename,
            "src": self.src,
            "description": self.description,
            "file_type": self.file_type,
            "downloadable": self.downloadable,
            "is_confidential": self.is_confidential,
            "extraction_status": self.extraction_status,
            "extraction_strategy": self.extraction_strategy,
            "extraction_error": self.extraction_error,
            "text_length": len(self.text) if self.text else 0,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        """Create attachment from stored dictionary (extracted text is not stored)."""
        return cls(
            filename=data.get("filename") or "",
            src=data.get("src"),
            description=data.get("description") or "",
            file_type=data.get("file_type") or "unknown",
            downloadable=bool(data.get("downloadable")),
            is_confidential=bool(data.get("is_confidential")),
            extraction_status=data.get("extraction_status"),
            extraction_strategy=data.get("extraction_strategy"),
            extraction_error=data.get("extraction_error"),
        )


@dataclass
class AISummary:
    """Structured AI analysis of a filing."""

    summary: str = "Summary not available"
    key_points: List[str] = field(default_factory=list)
    stakeholders: str = "Stakeholder analysis not available"
    regulatory_impact: str = "Impact analysis not available"
    document_analysis: Optional[str] = None
    confidence: str = "Medium"
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "key_points": self.key_points,
            "stakeholders": self.stakeholders,
            "regulatory_impact": self.regulatory_impact,
            "document_analysis": self.document_analysis,
            "confidence": self.confidence,
            "degraded": self.degraded,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AISummary":
        defaults = cls()
        return cls(
            summary=data.get("summary") or defaults.summary,
            key_points=list(data.get("key_points") or []),
            stakeholders=data.get("stakeholders") or defaults.stakeholders,
            regulatory_impact=data.get("regulatory_impact")
            or defaults.regulatory_impact,
            document_analysis=data.get("document_analysis"),
            confidence=data.get("confidence") or defaults.confidence,
            degraded=bool(data.get("degraded")),
        )


@dataclass
class Filing:
    """One submission to a docket, keyed by the source's submission id."""

    id: str
    docket_number: str
    title: str
    author: str
    filing_type: str = "unknown"
    date_received: Optional[datetime] = None
    filing_url: str = ""
    attachments: List[Attachment] = field(default_factory=list)
    is_restricted: bool = False
    raw_data: Dict[str, Any] = field(default_factory=dict)
    status: FilingStatus = FilingStatus.PENDING
    ai_summary: Optional[AISummary] = None
    processed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert filing to a JSON-safe dictionary (inline snapshots, exports)."""
        return {
            "id": self.id,
            "docket_number": self.docket_number,
            "title": self.title,
            "author": self.author,
            "filing_type": self.filing_type,
            "date_received": (
                self.date_received.isoformat() if self.date_received else None
            ),
            "filing_url": self.filing_url,
            "attachments": [a.to_dict() for a in self.attachments],
            "is_restricted": self.is_restricted,
            "status": self.status.value,
            "ai_summary": self.ai_summary.to_dict() if self.ai_summary else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Filing":
        """Create filing from a dictionary produced by ``to_dict``."""
        summary = data.get("ai_summary")
        return cls(
            id=str(data["id"]),
            docket_number=data.get("docket_number") or "",
            title=data.get("title") or "Untitled Filing",
            author=data.get("author") or "Unknown Filer",
            filing_type=data.get("filing_type") or "unknown",
            date_received=parse_timestamp(data.get("date_received")),
            filing_url=data.get("filing_url") or "",
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
            is_restricted=bool(data.get("is_restricted")),
            status=FilingStatus(data.get("status") or FilingStatus.PENDING.value),
            ai_summary=AISummary.from_dict(summary) if summary else None,
        )


@dataclass
class DetectionResult:
    """Classified outcome of change detection for one docket."""

    docket_number: str
    status: DetectionStatus
    filings: List[Filing] = field(default_factory=list)
    latest_filing_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def has_new_filings(self) -> bool:
        return bool(self.filings)


@dataclass
class User:
    """A subscriber account and its content tier."""

    email: str
    tier: UserTier = UserTier.FREE
    trial_expires_at: Optional[datetime] = None

    def effective_tier(self, now: datetime) -> UserTier:
        """Resolve the tier used for rendering; an expired trial reads as free."""
        if self.tier == UserTier.TRIAL and self.trial_expires_at is not None:
            if self.trial_expires_at <= now:
                return UserTier.FREE
        return self.tier


@dataclass
class Subscriber:
    """A recipient subscribed to a docket."""

    email: str
    docket_number: str
    frequency: DigestType = DigestType.DAILY
    tier: UserTier = UserTier.FREE
    trial_expires_at: Optional[datetime] = None
    needs_seed: bool = False


@dataclass
class NotificationQueueItem:
    """A pending or delivered digest entry for one recipient and docket."""

    user_email: str
    docket_number: str
    digest_type: DigestType
    scheduled_for: datetime
    filing_ids: List[str] = field(default_factory=list)
    filing_data: Optional[Dict[str, Any]] = None  # inline snapshot for seed digests
    status: QueueStatus = QueueStatus.PENDING
    error_message: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
