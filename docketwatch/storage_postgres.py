"""PostgreSQL storage backend for production deployments."""

import logging
from typing import Any, Sequence

from docketwatch.storage import MIGRATION_COLUMNS, FilingStorage

try:
    import psycopg2
    import psycopg2.extras
except Exception:  # pragma: no cover - optional dependency
    psycopg2 = None  # type: ignore

logger = logging.getLogger(__name__)


class PostgresFilingStorage(FilingStorage):
    """PostgreSQL-backed storage sharing the SQLite backend's queries."""

    serial_pk = "SERIAL PRIMARY KEY"
    backend = "postgres"

    def __init__(self, database_url: str):
        if not psycopg2:
            raise RuntimeError("psycopg2 is required for PostgreSQL backend")
        self.database_url = database_url
        self._ensure_schema()

    def _open(self) -> Any:
        return psycopg2.connect(
            self.database_url, cursor_factory=psycopg2.extras.RealDictCursor
        )

    def _sql(self, statement: str) -> str:
        return statement.replace("?", "%s")

    def _insert_returning_id(self, cur: Any, statement: str, params: Sequence[Any]) -> int:
        self._execute(cur, statement.rstrip() + " RETURNING id", params)
        return int(cur.fetchone()["id"])

    def _apply_migrations(self, cur: Any) -> None:
        for table, column, column_type in MIGRATION_COLUMNS:
            cur.execute(
                f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} {column_type}"
            )
        logger.debug("Postgres schema migrations applied")
