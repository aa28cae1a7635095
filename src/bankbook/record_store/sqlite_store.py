"""
SQLite-based record store implementation.

Tables:
- records: one row per record (table name, id, JSON field map, timestamps)

Filters are evaluated in Python with ``Filter.matches`` so the local store
answers queries exactly like the remote one.
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from .base import Record, RecordNotFoundError, RecordStore, SortSpec
from .filters import Filter

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Unsupported field value type: {type(value).__name__}")


def _new_record_id() -> str:
    return f"rec{uuid.uuid4().hex[:14]}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteRecordStore(RecordStore):
    """
    Local record store.

    Thread-safe for single-writer scenarios.
    """

    max_batch_size = 500

    def __init__(self, db_path: Path | str):
        """
        Initialize record store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    table_name TEXT NOT NULL,
                    record_id TEXT NOT NULL,
                    fields TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (table_name, record_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_table ON records(table_name, created_at)"
            )

    def create(self, table: str, fields: dict[str, Any]) -> str:
        return self._create_batch(table, [fields])[0]

    def _create_batch(self, table: str, rows: list[dict[str, Any]]) -> list[str]:
        ids = []
        now = _now()
        with self._transaction() as conn:
            for row in rows:
                record_id = _new_record_id()
                conn.execute(
                    """
                    INSERT INTO records (table_name, record_id, fields, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (table, record_id, json.dumps(row, default=_json_default), now, now),
                )
                ids.append(record_id)
        return ids

    def update(self, table: str, record_id: str, fields: dict[str, Any]) -> None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT fields FROM records WHERE table_name = ? AND record_id = ?",
                (table, record_id),
            ).fetchone()
            if row is None:
                raise RecordNotFoundError(table, record_id)
            merged = json.loads(row["fields"])
            merged.update(fields)
            conn.execute(
                """
                UPDATE records SET fields = ?, updated_at = ?
                WHERE table_name = ? AND record_id = ?
                """,
                (json.dumps(merged, default=_json_default), _now(), table, record_id),
            )

    def find(self, table: str, record_id: str) -> Record:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT record_id, fields FROM records WHERE table_name = ? AND record_id = ?",
                (table, record_id),
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(table, record_id)
        return Record(id=row["record_id"], fields=json.loads(row["fields"]))

    def query(
        self,
        table: str,
        filter: Filter | None = None,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT record_id, fields FROM records
                WHERE table_name = ? ORDER BY created_at, rowid
                """,
                (table,),
            ).fetchall()

        records = [Record(id=row["record_id"], fields=json.loads(row["fields"])) for row in rows]
        if filter is not None:
            records = [r for r in records if filter.matches(r.fields)]

        # Stable sorts applied from the last key to the first; empty values last
        for field_name, direction in reversed(list(sort or [])):
            present = [r for r in records if r.fields.get(field_name) is not None]
            missing = [r for r in records if r.fields.get(field_name) is None]
            present.sort(key=lambda r: r.fields[field_name], reverse=direction == "desc")
            records = present + missing

        return records[:limit] if limit is not None else records

    def _destroy_batch(self, table: str, record_ids: list[str]) -> None:
        with self._transaction() as conn:
            conn.executemany(
                "DELETE FROM records WHERE table_name = ? AND record_id = ?",
                [(table, record_id) for record_id in record_ids],
            )

    def test_connection(self) -> bool:
        """Test that the database file can be opened and queried."""
        try:
            with self._transaction() as conn:
                conn.execute("SELECT 1")
            return True
        except sqlite3.Error as e:
            logger.error(f"Record store at {self.db_path} unusable: {e}")
            return False

    def count(self, table: str) -> int:
        """Number of records in a table."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM records WHERE table_name = ?", (table,)
            ).fetchone()
        return row["n"]
