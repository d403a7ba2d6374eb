"""
DocketWatch storage - persisted dockets, filings, subscriptions and queue

SQLite is the default backend; ``create_storage`` selects the PostgreSQL
backend when a ``postgres`` URL is configured. Both backends share the SQL
below, written with ``?`` placeholders and ``ON CONFLICT`` clauses that both
engines accept.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set

from docketwatch.models import (
    AISummary,
    Attachment,
    DigestType,
    Docket,
    DocketStatus,
    Filing,
    FilingStatus,
    NotificationQueueItem,
    QueueStatus,
    Subscriber,
    User,
    UserTier,
)
from docketwatch.utils import (
    is_valid_docket_number,
    parse_timestamp,
    to_storage_timestamp,
    truncate,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_AUTHOR_LENGTH = 200

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS dockets (
        docket_number TEXT PRIMARY KEY,
        status TEXT NOT NULL DEFAULT 'active',
        latest_seen_filing_id TEXT,
        consecutive_error_count INTEGER DEFAULT 0,
        subscriber_count INTEGER DEFAULT 0,
        last_error TEXT,
        last_checked_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS filings (
        id TEXT PRIMARY KEY,
        docket_number TEXT NOT NULL,
        title TEXT NOT NULL,
        author TEXT NOT NULL,
        filing_type TEXT,
        date_received TEXT,
        filing_url TEXT,
        attachments TEXT DEFAULT '[]',
        is_restricted INTEGER DEFAULT 0,
        raw_data TEXT DEFAULT '{{}}',
        status TEXT NOT NULL DEFAULT 'pending',
        ai_summary TEXT,
        processed_at TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        email TEXT PRIMARY KEY,
        tier TEXT NOT NULL DEFAULT 'free',
        trial_expires_at TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        id {serial_pk},
        user_email TEXT NOT NULL,
        docket_number TEXT NOT NULL,
        frequency TEXT NOT NULL DEFAULT 'daily',
        needs_seed INTEGER DEFAULT 1,
        created_at TEXT NOT NULL,
        UNIQUE(user_email, docket_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notification_queue (
        id {serial_pk},
        user_email TEXT NOT NULL,
        docket_number TEXT NOT NULL,
        filing_ids TEXT DEFAULT '[]',
        filing_data TEXT,
        digest_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        scheduled_for TEXT NOT NULL,
        created_at TEXT NOT NULL,
        sent_at TEXT,
        error_message TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_notifications (
        id {serial_pk},
        user_email TEXT NOT NULL,
        filing_id TEXT NOT NULL,
        notification_type TEXT NOT NULL,
        sent_at TEXT NOT NULL,
        UNIQUE(user_email, filing_id, notification_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS system_health_logs (
        id {serial_pk},
        run_type TEXT NOT NULL,
        status TEXT NOT NULL,
        details TEXT DEFAULT '{{}}',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_state (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_filings_docket ON filings(docket_number, date_received)",
    "CREATE INDEX IF NOT EXISTS idx_queue_due ON notification_queue(status, scheduled_for)",
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_docket ON subscriptions(docket_number)",
]

# Columns added after the first release; applied to existing databases.
MIGRATION_COLUMNS = [
    ("dockets", "deluged_at", "TEXT"),
    ("notification_queue", "claim_token", "TEXT"),
    ("notification_queue", "claimed_at", "TEXT"),
]


class ValidationError(ValueError):
    """Raised when a filing cannot be stored as-is."""


def validate_filing(filing: Filing) -> Filing:
    """Truncate oversized text fields and check required ones.

    Raises:
        ValidationError: If a required field is missing or the docket is malformed
    """
    missing = [
        name
        for name, value in {
            "id": filing.id,
            "docket_number": filing.docket_number,
            "title": filing.title,
            "author": filing.author,
        }.items()
        if not value
    ]
    if missing:
        raise ValidationError(f"Filing missing required fields: {', '.join(missing)}")

    if not is_valid_docket_number(filing.docket_number):
        raise ValidationError(f"Invalid docket number format: {filing.docket_number}")

    filing.title = truncate(filing.title, MAX_TITLE_LENGTH, suffix="")
    filing.author = truncate(filing.author, MAX_AUTHOR_LENGTH, suffix="")
    return filing


def _ts(value: Optional[datetime]) -> Optional[str]:
    return to_storage_timestamp(value) if value else None


class FilingStorage:
    """SQLite-backed storage for the monitoring pipeline."""

    serial_pk = "INTEGER PRIMARY KEY AUTOINCREMENT"
    backend = "sqlite"

    def __init__(self, db_path: str = "docketwatch.db"):
        self.db_path = db_path
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Connection plumbing
    # ------------------------------------------------------------------

    def _open(self) -> Any:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _sql(self, statement: str) -> str:
        """Adapt a ``?``-placeholder statement to the backend's paramstyle."""
        return statement

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        conn = self._open()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _execute(self, cur: Any, statement: str, params: Sequence[Any] = ()) -> Any:
        cur.execute(self._sql(statement), tuple(params))
        return cur

    def _insert_returning_id(self, cur: Any, statement: str, params: Sequence[Any]) -> int:
        self._execute(cur, statement, params)
        return int(cur.lastrowid)

    def _ensure_schema(self) -> None:
        """Create tables and apply column migrations."""
        with self._connection() as conn:
            cur = conn.cursor()
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement.format(serial_pk=self.serial_pk))
            self._apply_migrations(cur)

    def _apply_migrations(self, cur: Any) -> None:
        for table, column, column_type in MIGRATION_COLUMNS:
            try:
                cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
            except sqlite3.OperationalError as exc:
                if "duplicate column" in str(exc).lower():
                    continue
                raise

    @staticmethod
    def _placeholders(count: int) -> str:
        return ",".join("?" for _ in range(count))

    # ------------------------------------------------------------------
    # Dockets
    # ------------------------------------------------------------------

    def _row_to_docket(self, row: Any) -> Docket:
        return Docket(
            docket_number=row["docket_number"],
            status=DocketStatus(row["status"]),
            latest_seen_filing_id=row["latest_seen_filing_id"],
            consecutive_error_count=row["consecutive_error_count"] or 0,
            subscriber_count=row["subscriber_count"] or 0,
            deluged_at=parse_timestamp(row["deluged_at"]),
            last_checked_at=parse_timestamp(row["last_checked_at"]),
            created_at=parse_timestamp(row["created_at"]),
        )

    def get_docket(self, docket_number: str) -> Optional[Docket]:
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                "SELECT * FROM dockets WHERE docket_number = ?",
                (docket_number,),
            )
            row = cur.fetchone()
        return self._row_to_docket(row) if row else None

    def ensure_docket(
        self, docket_number: str, latest_seen_filing_id: Optional[str] = None
    ) -> Docket:
        """Insert the docket if it is not tracked yet and return its state."""
        now = to_storage_timestamp(utc_now())
        with self._connection() as conn:
            self._execute(
                conn.cursor(),
                """
                INSERT INTO dockets (
                    docket_number, status, latest_seen_filing_id, created_at, updated_at
                ) VALUES (?, 'active', ?, ?, ?)
                ON CONFLICT (docket_number) DO NOTHING
                """,
                (docket_number, latest_seen_filing_id, now, now),
            )
        docket = self.get_docket(docket_number)
        if docket is None:
            raise RuntimeError(f"Docket {docket_number} was not persisted")
        return docket

    def list_monitored_dockets(self) -> List[Docket]:
        """All dockets except paused ones, in docket-number order."""
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                "SELECT * FROM dockets WHERE status != 'paused' ORDER BY docket_number",
            )
            rows = cur.fetchall()
        return [self._row_to_docket(row) for row in rows]

    def update_latest_seen(
        self, docket_number: str, filing_id: str, checked_at: Optional[datetime] = None
    ) -> None:
        """Record the newest observed filing id and clear the error streak."""
        now = to_storage_timestamp(checked_at or utc_now())
        with self._connection() as conn:
            self._execute(
                conn.cursor(),
                """
                UPDATE dockets
                SET latest_seen_filing_id = ?, consecutive_error_count = 0,
                    last_error = NULL, last_checked_at = ?, updated_at = ?,
                    status = CASE WHEN status = 'error' THEN 'active' ELSE status END
                WHERE docket_number = ?
                """,
                (filing_id, now, now, docket_number),
            )

    def mark_checked(self, docket_number: str, checked_at: Optional[datetime] = None) -> None:
        now = to_storage_timestamp(checked_at or utc_now())
        with self._connection() as conn:
            self._execute(
                conn.cursor(),
                "UPDATE dockets SET last_checked_at = ?, updated_at = ? WHERE docket_number = ?",
                (now, now, docket_number),
            )

    def record_docket_error(
        self, docket_number: str, message: str, error_threshold: int = 5
    ) -> None:
        """Increment the error streak; the docket reads as ``error`` past the threshold."""
        now = to_storage_timestamp(utc_now())
        with self._connection() as conn:
            self._execute(
                conn.cursor(),
                """
                UPDATE dockets
                SET consecutive_error_count = consecutive_error_count + 1,
                    last_error = ?, updated_at = ?,
                    status = CASE
                        WHEN status = 'active' AND consecutive_error_count + 1 >= ?
                        THEN 'error' ELSE status END
                WHERE docket_number = ?
                """,
                (message[:500], now, error_threshold, docket_number),
            )

    def set_deluged(self, docket_number: str, at: Optional[datetime] = None) -> bool:
        """Suspend a docket; returns True only on the transition into ``deluged``."""
        now = to_storage_timestamp(at or utc_now())
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                """
                UPDATE dockets SET status = 'deluged', deluged_at = ?, updated_at = ?
                WHERE docket_number = ? AND status != 'deluged'
                """,
                (now, now, docket_number),
            )
            return cur.rowcount > 0

    def clear_deluge_flags(self) -> List[str]:
        """Return every deluged docket to ``active``; returns the lifted dockets."""
        now = to_storage_timestamp(utc_now())
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                "SELECT docket_number FROM dockets WHERE status = 'deluged'",
            )
            lifted = [row["docket_number"] for row in cur.fetchall()]
            if lifted:
                self._execute(
                    cur,
                    f"""
                    UPDATE dockets SET status = 'active', deluged_at = NULL, updated_at = ?
                    WHERE docket_number IN ({self._placeholders(len(lifted))})
                    """,
                    (now, *lifted),
                )
        return lifted

    # ------------------------------------------------------------------
    # Filings
    # ------------------------------------------------------------------

    def existing_filing_ids(self, filing_ids: Iterable[str]) -> Set[str]:
        """Batched existence check: one IN query for all candidate ids."""
        ids = list(dict.fromkeys(filing_ids))
        if not ids:
            return set()
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                f"SELECT id FROM filings WHERE id IN ({self._placeholders(len(ids))})",
                ids,
            )
            return {row["id"] for row in cur.fetchall()}

    def store_filings(self, filings: List[Filing]) -> List[str]:
        """Validate and insert filings; existing ids are left untouched.

        Returns:
            Ids of the filings actually inserted
        """
        stored: List[str] = []
        now = to_storage_timestamp(utc_now())
        with self._connection() as conn:
            cur = conn.cursor()
            for filing in filings:
                try:
                    validate_filing(filing)
                except ValidationError as e:
                    logger.warning(f"Skipping filing {filing.id or '<no id>'}: {e}")
                    continue

                self._execute(
                    cur,
                    """
                    INSERT INTO filings (
                        id, docket_number, title, author, filing_type, date_received,
                        filing_url, attachments, is_restricted, raw_data, status,
                        ai_summary, processed_at, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    (
                        filing.id,
                        filing.docket_number,
                        filing.title,
                        filing.author,
                        filing.filing_type,
                        _ts(filing.date_received),
                        filing.filing_url,
                        json.dumps([a.to_dict() for a in filing.attachments]),
                        1 if filing.is_restricted else 0,
                        json.dumps(filing.raw_data, default=str),
                        filing.status.value,
                        (
                            json.dumps(filing.ai_summary.to_dict())
                            if filing.ai_summary
                            else None
                        ),
                        _ts(filing.processed_at),
                        now,
                    ),
                )
                if cur.rowcount > 0:
                    stored.append(filing.id)
        return stored

    def _row_to_filing(self, row: Any) -> Filing:
        summary = row["ai_summary"]
        return Filing(
            id=row["id"],
            docket_number=row["docket_number"],
            title=row["title"],
            author=row["author"],
            filing_type=row["filing_type"] or "unknown",
            date_received=parse_timestamp(row["date_received"]),
            filing_url=row["filing_url"] or "",
            attachments=[
                Attachment.from_dict(a) for a in json.loads(row["attachments"] or "[]")
            ],
            is_restricted=bool(row["is_restricted"]),
            raw_data=json.loads(row["raw_data"] or "{}"),
            status=FilingStatus(row["status"]),
            ai_summary=AISummary.from_dict(json.loads(summary)) if summary else None,
            processed_at=parse_timestamp(row["processed_at"]),
        )

    def get_filings(self, filing_ids: Iterable[str]) -> List[Filing]:
        """Fetch filings by id, newest first."""
        ids = list(dict.fromkeys(filing_ids))
        if not ids:
            return []
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                f"""
                SELECT * FROM filings WHERE id IN ({self._placeholders(len(ids))})
                ORDER BY date_received DESC, id
                """,
                ids,
            )
            rows = cur.fetchall()

        filings = []
        for row in rows:
            try:
                filings.append(self._row_to_filing(row))
            except Exception as e:
                logger.error(f"Error converting row to filing: {e}")
        return filings

    def get_latest_filing(self, docket_number: str) -> Optional[Filing]:
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                """
                SELECT * FROM filings WHERE docket_number = ?
                ORDER BY date_received DESC, created_at DESC LIMIT 1
                """,
                (docket_number,),
            )
            row = cur.fetchone()
        return self._row_to_filing(row) if row else None

    # ------------------------------------------------------------------
    # Users and subscriptions
    # ------------------------------------------------------------------

    def upsert_user(
        self,
        email: str,
        tier: UserTier = UserTier.FREE,
        trial_expires_at: Optional[datetime] = None,
    ) -> User:
        email = email.strip().lower()
        with self._connection() as conn:
            self._execute(
                conn.cursor(),
                """
                INSERT INTO users (email, tier, trial_expires_at, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (email) DO UPDATE SET
                    tier = excluded.tier, trial_expires_at = excluded.trial_expires_at
                """,
                (email, tier.value, _ts(trial_expires_at), to_storage_timestamp(utc_now())),
            )
        return User(email=email, tier=tier, trial_expires_at=trial_expires_at)

    def get_user(self, email: str) -> Optional[User]:
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                "SELECT * FROM users WHERE email = ?",
                (email.strip().lower(),),
            )
            row = cur.fetchone()
        if not row:
            return None
        return User(
            email=row["email"],
            tier=UserTier(row["tier"]),
            trial_expires_at=parse_timestamp(row["trial_expires_at"]),
        )

    def add_subscription(
        self,
        email: str,
        docket_number: str,
        frequency: DigestType = DigestType.DAILY,
        needs_seed: bool = True,
    ) -> bool:
        """Subscribe a recipient to a docket; returns False if already subscribed."""
        email = email.strip().lower()
        now = to_storage_timestamp(utc_now())
        self.ensure_docket(docket_number)
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                """
                INSERT INTO subscriptions (
                    user_email, docket_number, frequency, needs_seed, created_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (user_email, docket_number) DO NOTHING
                """,
                (email, docket_number, frequency.value, 1 if needs_seed else 0, now),
            )
            created = cur.rowcount > 0
            self._execute(
                cur,
                """
                UPDATE dockets SET subscriber_count = (
                    SELECT COUNT(*) FROM subscriptions WHERE docket_number = ?
                ) WHERE docket_number = ?
                """,
                (docket_number, docket_number),
            )
        return created

    def _row_to_subscriber(self, row: Any) -> Subscriber:
        return Subscriber(
            email=row["user_email"],
            docket_number=row["docket_number"],
            frequency=DigestType(row["frequency"]),
            tier=UserTier(row["tier"] or UserTier.FREE.value),
            trial_expires_at=parse_timestamp(row["trial_expires_at"]),
            needs_seed=bool(row["needs_seed"]),
        )

    def get_subscribers(self, docket_numbers: Iterable[str]) -> List[Subscriber]:
        """Subscriptions for the given dockets, joined with user tier."""
        dockets = list(dict.fromkeys(docket_numbers))
        if not dockets:
            return []
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                f"""
                SELECT s.user_email, s.docket_number, s.frequency, s.needs_seed,
                       u.tier, u.trial_expires_at
                FROM subscriptions s
                LEFT JOIN users u ON u.email = s.user_email
                WHERE s.docket_number IN ({self._placeholders(len(dockets))})
                ORDER BY s.user_email, s.docket_number
                """,
                dockets,
            )
            rows = cur.fetchall()
        return [self._row_to_subscriber(row) for row in rows]

    def get_subscriptions_needing_seed(self) -> List[Subscriber]:
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                """
                SELECT s.user_email, s.docket_number, s.frequency, s.needs_seed,
                       u.tier, u.trial_expires_at
                FROM subscriptions s
                LEFT JOIN users u ON u.email = s.user_email
                WHERE s.needs_seed = 1
                ORDER BY s.created_at, s.id
                """,
            )
            rows = cur.fetchall()
        return [self._row_to_subscriber(row) for row in rows]

    def mark_subscription_seeded(self, email: str, docket_number: str) -> bool:
        """Clear the seed flag; returns False when it was already cleared."""
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                """
                UPDATE subscriptions SET needs_seed = 0
                WHERE user_email = ? AND docket_number = ? AND needs_seed = 1
                """,
                (email.strip().lower(), docket_number),
            )
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Notification queue
    # ------------------------------------------------------------------

    def enqueue_notification(self, item: NotificationQueueItem) -> int:
        created_at = item.created_at or utc_now()
        with self._connection() as conn:
            item_id = self._insert_returning_id(
                conn.cursor(),
                """
                INSERT INTO notification_queue (
                    user_email, docket_number, filing_ids, filing_data, digest_type,
                    status, scheduled_for, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.user_email.strip().lower(),
                    item.docket_number,
                    json.dumps(item.filing_ids),
                    json.dumps(item.filing_data) if item.filing_data else None,
                    item.digest_type.value,
                    QueueStatus.PENDING.value,
                    to_storage_timestamp(item.scheduled_for),
                    to_storage_timestamp(created_at),
                ),
            )
        item.id = item_id
        return item_id

    def _row_to_queue_item(self, row: Any) -> NotificationQueueItem:
        try:
            filing_ids = json.loads(row["filing_ids"] or "[]")
        except ValueError:
            filing_ids = [row["filing_ids"]]
        if not isinstance(filing_ids, list):
            filing_ids = [filing_ids]

        return NotificationQueueItem(
            id=row["id"],
            user_email=row["user_email"],
            docket_number=row["docket_number"],
            digest_type=DigestType(row["digest_type"]),
            scheduled_for=parse_timestamp(row["scheduled_for"]),
            filing_ids=[str(f) for f in filing_ids],
            filing_data=json.loads(row["filing_data"]) if row["filing_data"] else None,
            status=QueueStatus(row["status"]),
            error_message=row["error_message"],
            created_at=parse_timestamp(row["created_at"]),
            sent_at=parse_timestamp(row["sent_at"]),
        )

    def get_due_notifications(
        self, now: datetime, limit: int, stale_claim_before: datetime
    ) -> List[NotificationQueueItem]:
        """Pending, unclaimed items due by ``now``, oldest schedule first."""
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                """
                SELECT * FROM notification_queue
                WHERE status = 'pending' AND scheduled_for <= ?
                  AND (claim_token IS NULL OR claimed_at < ?)
                ORDER BY scheduled_for ASC, created_at ASC, id ASC
                LIMIT ?
                """,
                (
                    to_storage_timestamp(now),
                    to_storage_timestamp(stale_claim_before),
                    limit,
                ),
            )
            rows = cur.fetchall()
        return [self._row_to_queue_item(row) for row in rows]

    def claim_notifications(
        self,
        item_ids: Sequence[int],
        claim_token: str,
        now: datetime,
        stale_claim_before: datetime,
    ) -> List[int]:
        """Atomically claim pending items for one drain; returns the ids won.

        Items claimed by a concurrent drain (and not yet stale) are not returned.
        """
        if not item_ids:
            return []
        marks = self._placeholders(len(item_ids))
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                f"""
                UPDATE notification_queue SET claim_token = ?, claimed_at = ?
                WHERE id IN ({marks}) AND status = 'pending'
                  AND (claim_token IS NULL OR claimed_at < ?)
                """,
                (
                    claim_token,
                    to_storage_timestamp(now),
                    *item_ids,
                    to_storage_timestamp(stale_claim_before),
                ),
            )
            self._execute(
                cur,
                f"""
                SELECT id FROM notification_queue
                WHERE claim_token = ? AND status = 'pending' AND id IN ({marks})
                """,
                (claim_token, *item_ids),
            )
            return sorted(row["id"] for row in cur.fetchall())

    def _finish_notifications(
        self,
        item_ids: Sequence[int],
        claim_token: str,
        status: QueueStatus,
        sent_at: Optional[datetime],
        error_message: Optional[str],
    ) -> int:
        if not item_ids:
            return 0
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                f"""
                UPDATE notification_queue
                SET status = ?, sent_at = ?, error_message = ?
                WHERE id IN ({self._placeholders(len(item_ids))})
                  AND status = 'pending' AND claim_token = ?
                """,
                (status.value, _ts(sent_at), error_message, *item_ids, claim_token),
            )
            return cur.rowcount

    def mark_notifications_sent(
        self, item_ids: Sequence[int], claim_token: str, sent_at: datetime
    ) -> int:
        return self._finish_notifications(
            item_ids, claim_token, QueueStatus.SENT, sent_at, None
        )

    def mark_notifications_failed(
        self, item_ids: Sequence[int], claim_token: str, error_message: str
    ) -> int:
        return self._finish_notifications(
            item_ids, claim_token, QueueStatus.FAILED, None, error_message[:1000]
        )

    def get_notification(self, item_id: int) -> Optional[NotificationQueueItem]:
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(), "SELECT * FROM notification_queue WHERE id = ?", (item_id,)
            )
            row = cur.fetchone()
        return self._row_to_queue_item(row) if row else None

    def get_queue_stats(self, since: datetime) -> Dict[str, Any]:
        """Status/digest-type breakdown since ``since`` plus the pending backlog."""
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                """
                SELECT status, digest_type, COUNT(*) AS count
                FROM notification_queue WHERE created_at > ?
                GROUP BY status, digest_type
                ORDER BY status, digest_type
                """,
                (to_storage_timestamp(since),),
            )
            breakdown = [
                {
                    "status": row["status"],
                    "digest_type": row["digest_type"],
                    "count": row["count"],
                }
                for row in cur.fetchall()
            ]
            self._execute(
                cur,
                "SELECT COUNT(*) AS count FROM notification_queue WHERE status = 'pending'",
            )
            pending = cur.fetchone()["count"]
        return {"breakdown": breakdown, "pending_total": pending}

    def record_user_notifications(
        self,
        email: str,
        filing_ids: Iterable[str],
        notification_type: DigestType,
        sent_at: datetime,
    ) -> None:
        with self._connection() as conn:
            cur = conn.cursor()
            for filing_id in filing_ids:
                self._execute(
                    cur,
                    """
                    INSERT INTO user_notifications (
                        user_email, filing_id, notification_type, sent_at
                    ) VALUES (?, ?, ?, ?)
                    ON CONFLICT (user_email, filing_id, notification_type) DO NOTHING
                    """,
                    (
                        email.strip().lower(),
                        filing_id,
                        notification_type.value,
                        to_storage_timestamp(sent_at),
                    ),
                )

    # ------------------------------------------------------------------
    # Run bookkeeping
    # ------------------------------------------------------------------

    def log_run(self, run_type: str, status: str, details: Dict[str, Any]) -> None:
        with self._connection() as conn:
            self._execute(
                conn.cursor(),
                """
                INSERT INTO system_health_logs (run_type, status, details, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (run_type, status, json.dumps(details, default=str), to_storage_timestamp(utc_now())),
            )

    def get_recent_runs(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(),
                "SELECT * FROM system_health_logs ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            rows = cur.fetchall()
        return [
            {
                "run_type": row["run_type"],
                "status": row["status"],
                "details": json.loads(row["details"] or "{}"),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def get_state(self, key: str) -> Optional[str]:
        with self._connection() as conn:
            cur = self._execute(
                conn.cursor(), "SELECT value FROM app_state WHERE key = ?", (key,)
            )
            row = cur.fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        with self._connection() as conn:
            self._execute(
                conn.cursor(),
                """
                INSERT INTO app_state (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET
                    value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, to_storage_timestamp(utc_now())),
            )

    def health_check(self) -> Dict[str, Any]:
        """Perform a simple database health check."""
        try:
            with self._connection() as conn:
                cur = conn.cursor()
                cur.execute("SELECT 1")
                cur.fetchone()
            return {"database": "ok", "backend": self.backend}
        except Exception as exc:
            return {"database": "error", "backend": self.backend, "detail": str(exc)}


def create_storage(
    database_url: Optional[str] = None, database_file: str = "docketwatch.db"
) -> FilingStorage:
    """Factory to create the appropriate storage backend."""
    if database_url and database_url.startswith("postgres"):
        try:
            from docketwatch.storage_postgres import PostgresFilingStorage

            return PostgresFilingStorage(database_url)
        except Exception as exc:
            logger.warning(
                "Failed to connect to Postgres backend (%s); falling back to SQLite. Detail: %s",
                database_url.split("@")[-1],
                exc,
            )
    return FilingStorage(database_file)
