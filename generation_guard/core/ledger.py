"""
Usage ledger and rolling-window aggregates.

Keeps the append-only record of generation events per identity and
answers windowed sums over it. A window ending at `now` covers the
half-open interval (now - window, now]: an event exactly one window old
no longer counts.
"""

import threading
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from generation_guard.storage.models import UsageEvent
from .clock import Clock, utc_now


HOUR = timedelta(hours=1)
DAY = timedelta(hours=24)


@dataclass(frozen=True)
class RollingStats:
    """Windowed usage summary for one identity."""
    batch_count: float
    batch_limit: float
    ideas_count: int
    is_soft_warning: bool
    next_reset_timestamp: Optional[datetime]

    @property
    def remaining(self) -> float:
        return max(0.0, self.batch_limit - self.batch_count)

    def to_dict(self) -> dict:
        return {
            "batch_count": self.batch_count,
            "batch_limit": self.batch_limit,
            "remaining": self.remaining,
            "ideas_count": self.ideas_count,
            "is_soft_warning": self.is_soft_warning,
            "next_reset_timestamp": (
                self.next_reset_timestamp.isoformat() if self.next_reset_timestamp else None
            ),
        }


def summarize_window(
    events: List[UsageEvent],
    window: timedelta,
    batch_limit: float,
    soft_warning_threshold: Optional[float] = None,
) -> RollingStats:
    """Build RollingStats from the events inside one window (oldest first)."""
    batch_count = sum(e.batch_weight for e in events)
    is_soft_warning = (
        soft_warning_threshold is not None
        and batch_count >= batch_limit - soft_warning_threshold
    )
    return RollingStats(
        batch_count=batch_count,
        batch_limit=batch_limit,
        ideas_count=sum(e.ideas_count for e in events),
        is_soft_warning=is_soft_warning,
        next_reset_timestamp=events[0].timestamp + window if events else None,
    )


class BaseUsageLedger:
    """Window arithmetic shared by every ledger backend.

    Subclasses provide `record` and `window_events`.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now

    def record(self, event: UsageEvent) -> None:
        raise NotImplementedError

    def window_events(self, key: str, window: timedelta, now: Optional[datetime] = None) -> List[UsageEvent]:
        """Events for `key` inside (now - window, now], oldest first."""
        raise NotImplementedError

    def window_sum(self, key: str, window: timedelta, now: Optional[datetime] = None) -> float:
        return sum(e.batch_weight for e in self.window_events(key, window, now))

    def hourly_count(self, key: str, now: Optional[datetime] = None) -> float:
        """Sum of batch weights recorded in the last hour."""
        return self.window_sum(key, HOUR, now)

    def daily_count(self, key: str, now: Optional[datetime] = None) -> float:
        """Sum of batch weights recorded in the last 24 hours."""
        return self.window_sum(key, DAY, now)


class UsageLedger(BaseUsageLedger):
    """In-process ledger.

    Events are kept sorted by timestamp per identity so window bounds are
    found by bisection. Events older than the longest window are dropped
    lazily on append, and identities with nothing left are forgotten at
    most once an hour.
    """

    def __init__(self, clock: Optional[Clock] = None, retention: timedelta = DAY):
        super().__init__(clock)
        self.retention = retention
        self._lock = threading.Lock()
        self._timestamps: Dict[str, List[datetime]] = {}
        self._events: Dict[str, List[UsageEvent]] = {}
        self._last_purge: Optional[datetime] = None

    def record(self, event: UsageEvent) -> None:
        """Append an event; this is the only mutation the ledger allows."""
        with self._lock:
            timestamps = self._timestamps.setdefault(event.identity_key, [])
            events = self._events.setdefault(event.identity_key, [])
            index = bisect_right(timestamps, event.timestamp)
            timestamps.insert(index, event.timestamp)
            events.insert(index, event)
            now = self.clock()
            self._expire(event.identity_key, now)
            if self._last_purge is None or now - self._last_purge >= HOUR:
                self._purge(now)

    def window_events(self, key: str, window: timedelta, now: Optional[datetime] = None) -> List[UsageEvent]:
        now = now or self.clock()
        with self._lock:
            timestamps = self._timestamps.get(key)
            if not timestamps:
                return []
            start = bisect_right(timestamps, now - window)
            end = bisect_right(timestamps, now)
            return list(self._events[key][start:end])

    def keys(self) -> List[str]:
        """Identities with at least one retained event."""
        with self._lock:
            return sorted(self._timestamps)

    def purge(self, now: Optional[datetime] = None) -> None:
        """Drop expired events for every identity and forget identities left empty."""
        with self._lock:
            self._purge(now or self.clock())

    def _purge(self, now: datetime) -> None:
        self._last_purge = now
        for key in list(self._timestamps):
            self._expire(key, now)
            if not self._timestamps[key]:
                del self._timestamps[key]
                del self._events[key]

    def _expire(self, key: str, now: datetime) -> None:
        timestamps = self._timestamps[key]
        cutoff = bisect_right(timestamps, now - self.retention)
        if cutoff:
            del timestamps[:cutoff]
            del self._events[key][:cutoff]
