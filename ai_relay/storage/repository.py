"""
Repository pattern for data access.

Handles the usage ledger and the router's selection counters.
"""

from typing import Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageRecord

_RECORD_COLUMNS = "backend_name, tokens_input, tokens_output, timestamp_millis, cost_estimate"


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger and selection tables if they don't exist.

    usage_record is an append-only ledger. Rows are only ever inserted, or
    deleted once they fall outside the retention horizon.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                backend_name TEXT NOT NULL,
                tokens_input INTEGER NOT NULL,
                tokens_output INTEGER NOT NULL,
                timestamp_millis INTEGER NOT NULL,
                cost_estimate REAL NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_usage_record_backend_time
            ON usage_record (backend_name, timestamp_millis)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS backend_selection (
                backend_name TEXT PRIMARY KEY,
                selection_count INTEGER NOT NULL DEFAULT 0,
                last_selected_millis INTEGER
            )
        """)
        conn.commit()
    finally:
        conn.close()


def insert_usage_record(record: UsageRecord, db_path: str = DEFAULT_DB_PATH) -> UsageRecord:
    """Append a single record to the ledger.

    The stored timestamp is clamped up to the latest timestamp already in
    the ledger, keeping timestamps non-decreasing in append order even if
    the wall clock steps backwards. Read and insert share one transaction.

    Args:
        record: The usage record to append
        db_path: Path to SQLite database file

    Returns:
        The record as stored
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        row = conn.execute("SELECT MAX(timestamp_millis) FROM usage_record").fetchone()
        last_timestamp = row[0]
        if last_timestamp is not None and record.timestamp_millis < last_timestamp:
            record = UsageRecord(
                backend_name=record.backend_name,
                tokens_input=record.tokens_input,
                tokens_output=record.tokens_output,
                timestamp_millis=last_timestamp,
                cost_estimate=record.cost_estimate
            )
        conn.execute(f"""
            INSERT INTO usage_record ({_RECORD_COLUMNS})
            VALUES (?, ?, ?, ?, ?)
        """, (
            record.backend_name,
            record.tokens_input,
            record.tokens_output,
            record.timestamp_millis,
            record.cost_estimate
        ))
        conn.commit()
        return record
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetch_usage_records(
    since_millis: Optional[int] = None,
    backend_name: Optional[str] = None,
    db_path: str = DEFAULT_DB_PATH
) -> List[UsageRecord]:
    """Fetch records newer than a timestamp, optionally for one backend.

    Returns records in append order (oldest first).

    Args:
        since_millis: Only records with a strictly greater timestamp
        backend_name: Optional filter for a specific backend
        db_path: Path to SQLite database file

    Returns:
        List of usage records
    """
    conn = get_connection(db_path)
    try:
        query = f"SELECT {_RECORD_COLUMNS} FROM usage_record"
        params = []
        conditions = []

        if since_millis is not None:
            conditions.append("timestamp_millis > ?")
            params.append(since_millis)
        if backend_name:
            conditions.append("backend_name = ?")
            params.append(backend_name)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id ASC"

        cursor = conn.execute(query, params)
        return [
            UsageRecord(
                backend_name=row[0],
                tokens_input=row[1],
                tokens_output=row[2],
                timestamp_millis=row[3],
                cost_estimate=row[4]
            )
            for row in cursor.fetchall()
        ]
    finally:
        conn.close()


def prune_usage_records(before_millis: int, db_path: str = DEFAULT_DB_PATH) -> int:
    """Drop records at or older than the retention cutoff.

    Args:
        before_millis: Records with timestamp <= this value are removed
        db_path: Path to SQLite database file

    Returns:
        Number of records removed
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            "DELETE FROM usage_record WHERE timestamp_millis <= ?",
            (before_millis,)
        )
        conn.commit()
        return cursor.rowcount
    finally:
        conn.close()


def increment_selection_count(
    backend_name: str,
    selected_millis: int,
    db_path: str = DEFAULT_DB_PATH
) -> None:
    """Add one to a backend's selection counter."""
    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO backend_selection (backend_name, selection_count, last_selected_millis)
            VALUES (?, 1, ?)
            ON CONFLICT(backend_name) DO UPDATE SET
                selection_count = selection_count + 1,
                last_selected_millis = excluded.last_selected_millis
        """, (backend_name, selected_millis))
        conn.commit()
    finally:
        conn.close()


def fetch_selection_counts(db_path: str = DEFAULT_DB_PATH) -> Dict[str, int]:
    """Return selection counts keyed by backend name."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("SELECT backend_name, selection_count FROM backend_selection")
        return {row[0]: row[1] for row in cursor.fetchall()}
    finally:
        conn.close()


def fetch_last_selected(db_path: str = DEFAULT_DB_PATH) -> Optional[str]:
    """Return the most recently selected backend, if any."""
    conn = get_connection(db_path)
    try:
        row = conn.execute("""
            SELECT backend_name FROM backend_selection
            WHERE last_selected_millis IS NOT NULL
            ORDER BY last_selected_millis DESC LIMIT 1
        """).fetchone()
        return row[0] if row else None
    finally:
        conn.close()


class UsageLedger:
    """Durable, append-only history of completed-request token consumption.

    Thin object over the module functions so the quota tracker can be
    handed one ledger per application session.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the ledger, creating the schema if needed.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        initialize_schema(db_path)

    def append(self, record: UsageRecord) -> UsageRecord:
        """Append a record; committed before this returns."""
        return insert_usage_record(record, self.db_path)

    def records_since(
        self,
        since_millis: Optional[int] = None,
        backend_name: Optional[str] = None
    ) -> List[UsageRecord]:
        """Records strictly newer than `since_millis`, oldest first."""
        return fetch_usage_records(
            since_millis=since_millis,
            backend_name=backend_name,
            db_path=self.db_path
        )

    def prune(self, before_millis: int) -> int:
        """Drop records at or older than `before_millis`."""
        return prune_usage_records(before_millis, self.db_path)


class SelectionRepository:
    """Persists the router's per-backend selection counters."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        initialize_schema(db_path)

    def load_counts(self) -> Dict[str, int]:
        return fetch_selection_counts(self.db_path)

    def load_last_used(self) -> Optional[str]:
        return fetch_last_selected(self.db_path)

    def record_selection(self, backend_name: str, selected_millis: int) -> None:
        increment_selection_count(backend_name, selected_millis, self.db_path)
