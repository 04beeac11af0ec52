"""
Shared test fixtures.
"""

import random
from datetime import datetime, timedelta, timezone

import pytest

from generation_guard.config.loader import GovernanceSettings


START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0, hours: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes, hours=hours)
        return self.now


def no_cooldown_settings(**overrides) -> GovernanceSettings:
    """Settings with every cooldown range pinned to zero."""
    values = {
        "cooldown_tier_a_min": 0,
        "cooldown_tier_a_max": 0,
        "cooldown_tier_b_min": 0,
        "cooldown_tier_b_max": 0,
        "cooldown_tier_c_min": 0,
        "cooldown_tier_c_max": 0,
    }
    values.update(overrides)
    return GovernanceSettings(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(1234)
