"""
Database connection management.

Provides SQLite connections for the persistent usage ledger.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "generation_guard.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection.

    A busy timeout lets concurrent writers from separate processes queue
    behind each other instead of failing immediately.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=5.0)
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn
