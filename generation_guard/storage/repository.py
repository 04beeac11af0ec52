"""
Repository pattern for data access.

SQLite-backed usage ledger with the same contract as the in-process
ledger: append-only writes and windowed reads over (now - window, now].
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from generation_guard.core.clock import Clock
from generation_guard.core.ledger import BaseUsageLedger
from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageEvent

_COLUMNS = (
    "identity_key, timestamp, batch_weight, tier, ideas_count, boost_applied, "
    "ip_address, session_id, user_agent, direction, is_campaign"
)


def _encode_timestamp(ts: datetime) -> str:
    # Fixed-width UTC text so string order matches time order
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_event(row) -> UsageEvent:
    return UsageEvent(
        identity_key=row[0],
        timestamp=datetime.fromisoformat(row[1]),
        batch_weight=row[2],
        tier=row[3],
        ideas_count=row[4],
        boost_applied=bool(row[5]),
        ip_address=row[6],
        session_id=row[7],
        user_agent=row[8],
        direction=row[9],
        is_campaign=bool(row[10]),
    )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage_event table if it doesn't exist.

    This is an append-only ledger. No UPDATE or DELETE operations are
    ever performed on this table.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                identity_key TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                batch_weight REAL NOT NULL,
                tier TEXT NOT NULL,
                ideas_count INTEGER NOT NULL DEFAULT 0,
                boost_applied INTEGER NOT NULL DEFAULT 0,
                ip_address TEXT,
                session_id TEXT,
                user_agent TEXT,
                direction TEXT,
                is_campaign INTEGER NOT NULL DEFAULT 0
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_usage_event_key_ts
            ON usage_event (identity_key, timestamp)
        """)
        conn.commit()
    finally:
        conn.close()


class UsageRepository(BaseUsageLedger):
    """Usage ledger persisted in SQLite.

    Each operation opens its own connection, so one instance can be shared
    across request threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Optional[Clock] = None):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            clock: Time source for window queries without an explicit `now`
        """
        super().__init__(clock)
        self.db_path = db_path

    def record(self, event: UsageEvent) -> None:
        """Insert a single usage event inside one transaction."""
        conn = get_connection(self.db_path)
        try:
            with conn:
                conn.execute(
                    f"INSERT INTO usage_event ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        event.identity_key,
                        _encode_timestamp(event.timestamp),
                        event.batch_weight,
                        event.tier,
                        event.ideas_count,
                        int(event.boost_applied),
                        event.ip_address,
                        event.session_id,
                        event.user_agent,
                        event.direction,
                        int(event.is_campaign),
                    ),
                )
        finally:
            conn.close()

    def window_events(self, key: str, window: timedelta, now: Optional[datetime] = None) -> List[UsageEvent]:
        now = now or self.clock()
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM usage_event
                WHERE identity_key = ? AND timestamp > ? AND timestamp <= ?
                ORDER BY timestamp ASC, id ASC
                """,
                (key, _encode_timestamp(now - window), _encode_timestamp(now)),
            )
            return [_row_to_event(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def window_sum(self, key: str, window: timedelta, now: Optional[datetime] = None) -> float:
        now = now or self.clock()
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT SUM(batch_weight) FROM usage_event
                WHERE identity_key = ? AND timestamp > ? AND timestamp <= ?
                """,
                (key, _encode_timestamp(now - window), _encode_timestamp(now)),
            ).fetchone()
            return float(row[0] or 0.0)
        finally:
            conn.close()

    def fetch_recent_events(self, key: Optional[str] = None, limit: int = 100) -> List[UsageEvent]:
        """Fetch recent events, newest first, optionally for one identity key."""
        conn = get_connection(self.db_path)
        try:
            query = f"SELECT {_COLUMNS} FROM usage_event"
            params: list = []
            if key:
                query += " WHERE identity_key = ?"
                params.append(key)
            query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
            params.append(limit)
            return [_row_to_event(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()
