"""
Cooldown management.

Per-identity suspension windows. An identity is Active until a recorded
usage downgrades its tier or newly crosses the soft-warning threshold; it
then sits in Cooldown(until) and returns to Active on its own once the
clock passes `until`.
"""

import logging
import math
import random
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from generation_guard.config.loader import GovernanceSettings
from .tiers import Tier, TierDecision, is_soft_warning

logger = logging.getLogger(__name__)


def cooldown_range(settings: GovernanceSettings, tier: Tier) -> tuple:
    """(min, max) cooldown seconds configured for `tier`."""
    suffix = tier.value.lower()
    return (
        getattr(settings, f"cooldown_tier_{suffix}_min"),
        getattr(settings, f"cooldown_tier_{suffix}_max"),
    )


def format_cooldown_time(seconds: int) -> str:
    """Render a wait time the way users see it ("45 seconds", "2 minutes", "1:30")."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds} second{'' if seconds == 1 else 's'}"
    minutes, remainder = divmod(seconds, 60)
    if remainder == 0:
        return f"{minutes} minute{'' if minutes == 1 else 's'}"
    return f"{minutes}:{remainder:02d}"


class CooldownManager:
    """Tracks cooldown deadlines per identity key."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.SystemRandom()
        self._lock = threading.Lock()
        self._until: Dict[str, datetime] = {}

    def until(self, key: str, now: datetime) -> Optional[datetime]:
        """Deadline of the active cooldown, or None when the identity is Active."""
        with self._lock:
            deadline = self._until.get(key)
            if deadline is None:
                return None
            if now >= deadline:
                del self._until[key]
                return None
            return deadline

    def remaining_seconds(self, key: str, now: datetime) -> int:
        """Whole seconds left on the cooldown, rounded up; 0 when Active."""
        deadline = self.until(key, now)
        if deadline is None:
            return 0
        return math.ceil((deadline - now).total_seconds())

    def draw_duration(self, settings: GovernanceSettings, tier: Tier) -> float:
        """Uniform random duration in seconds from the tier's configured range."""
        low, high = cooldown_range(settings, tier)
        return self._rng.uniform(low, high)

    def impose(self, key: str, tier: Tier, settings: GovernanceSettings, now: datetime) -> float:
        """Put `key` into cooldown for a duration drawn for `tier`."""
        duration = self.draw_duration(settings, tier)
        with self._lock:
            self._until[key] = now + timedelta(seconds=duration)
        logger.info(f"Cooldown imposed: key={key}, tier={tier.value}, seconds={duration:.1f}")
        return duration

    def evaluate(
        self,
        key: str,
        settings: GovernanceSettings,
        used_tier: Tier,
        next_decision: TierDecision,
        hourly_before: float,
        hourly_after: float,
        now: datetime,
    ) -> float:
        """Decide whether a just-recorded usage triggers a cooldown.

        Fires on a tier downgrade relative to the tier just used, or when the
        soft-warning threshold is crossed by this usage. No cooldown is set
        when the next request would hit a hard limit anyway.

        Returns:
            Seconds of cooldown imposed (0.0 when none)
        """
        if not next_decision.admitted or next_decision.tier is None:
            return 0.0

        downgraded = next_decision.tier.is_downgrade_from(used_tier)
        newly_warned = (
            not is_soft_warning(settings, hourly_before)
            and is_soft_warning(settings, hourly_after)
        )
        if not (downgraded or newly_warned):
            return 0.0

        return self.impose(key, next_decision.tier, settings, now)
