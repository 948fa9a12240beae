"""
Database connection management.

Provides the SQLite connection backing the usage ledger.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = ".ai-relay.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection with durable commits.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with synchronous=FULL so a commit survives a crash
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA synchronous = FULL")
    return conn
