"""
Abuse detection for request patterns.

Sliding window over raw admission-check arrivals per key. A burst alone
is not abuse: the request count must stay above the threshold for at
least `abuse_sustained_seconds` before a ban is issued.
"""

import logging
import random
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional

from generation_guard.config.loader import GovernanceSettings
from generation_guard.storage.models import BanRecord

logger = logging.getLogger(__name__)

BAN_REASON = "Sustained rapid requests detected"


@dataclass
class _RequestWindow:
    """Arrival timestamps for one key and when the rate first went high."""
    arrivals: Deque[datetime] = field(default_factory=deque)
    elevated_since: Optional[datetime] = None


class AbuseDetector:
    """Issues time-limited bans for sustained high request rates."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.SystemRandom()
        self._lock = threading.Lock()
        self._windows: Dict[str, _RequestWindow] = {}
        self._bans: Dict[str, BanRecord] = {}
        self._last_sweep: Optional[datetime] = None

    def active_ban(self, key: str, now: datetime) -> Optional[BanRecord]:
        """Current ban for `key`; expired bans are dropped on read."""
        with self._lock:
            return self._active_ban(key, now)

    def draw_ban_duration(self, settings: GovernanceSettings) -> timedelta:
        minutes = self._rng.uniform(settings.abuse_ban_minutes_min, settings.abuse_ban_minutes_max)
        return timedelta(minutes=minutes)

    def register_request(self, key: str, settings: GovernanceSettings, now: datetime) -> Optional[BanRecord]:
        """Record one arrival and ban the key if the rate stayed high long enough.

        Returns:
            The active ban for `key` after this arrival, if any
        """
        with self._lock:
            window = self._windows.setdefault(key, _RequestWindow())
            window.arrivals.append(now)
            horizon = now - timedelta(seconds=settings.abuse_window_seconds)
            while window.arrivals and window.arrivals[0] <= horizon:
                window.arrivals.popleft()
            self._maybe_sweep(horizon, now, settings)

            existing = self._active_ban(key, now)
            if existing is not None:
                return existing

            count = len(window.arrivals)
            if count <= settings.abuse_request_threshold:
                window.elevated_since = None
                return None

            if window.elevated_since is None:
                window.elevated_since = now
            sustained = now - window.elevated_since
            if sustained < timedelta(seconds=settings.abuse_sustained_seconds):
                return None

            ban = BanRecord(
                key=key,
                until=now + self.draw_ban_duration(settings),
                reason=BAN_REASON,
                created_at=now,
                request_count=count,
            )
            self._bans[key] = ban
            # Start counting afresh once the ban runs out
            del self._windows[key]

        logger.info(
            f"Ban issued: key={key}, requests={count}, "
            f"minutes={ban.duration_seconds / 60:.1f}"
        )
        return ban

    def active_keys(self) -> List[str]:
        """Keys with a live request window or ban."""
        with self._lock:
            return sorted(set(self._windows) | set(self._bans))

    def _maybe_sweep(self, horizon: datetime, now: datetime, settings: GovernanceSettings) -> None:
        # At most once per window length; drops idle windows and lapsed bans
        interval = timedelta(seconds=settings.abuse_window_seconds)
        if self._last_sweep is not None and now - self._last_sweep < interval:
            return
        self._last_sweep = now
        idle = [k for k, w in self._windows.items() if not w.arrivals or w.arrivals[-1] <= horizon]
        for key in idle:
            del self._windows[key]
        expired = [k for k, ban in self._bans.items() if now >= ban.until]
        for key in expired:
            del self._bans[key]

    def _active_ban(self, key: str, now: datetime) -> Optional[BanRecord]:
        ban = self._bans.get(key)
        if ban is None:
            return None
        if now >= ban.until:
            del self._bans[key]
            return None
        return ban
