"""
Unit tests for cooldown management.
"""

import random

import pytest

from conftest import START, FakeClock, no_cooldown_settings
from generation_guard.config.loader import DEFAULT_SETTINGS
from generation_guard.core.cooldown import CooldownManager, cooldown_range, format_cooldown_time
from generation_guard.core.tiers import Tier, decide


class TestFormatCooldownTime:
    """Test user-facing wait strings."""

    @pytest.mark.parametrize("seconds,expected", [
        (0, "0 seconds"),
        (1, "1 second"),
        (45, "45 seconds"),
        (60, "1 minute"),
        (120, "2 minutes"),
        (90, "1:30"),
        (605, "10:05"),
    ])
    def test_format(self, seconds, expected):
        assert format_cooldown_time(seconds) == expected


class TestCooldownManager:
    """Test cooldown deadlines and triggering rules."""

    def setup_method(self):
        """Set up test environment."""
        self.clock = FakeClock()
        self.manager = CooldownManager(rng=random.Random(7))

    def test_ranges(self):
        assert cooldown_range(DEFAULT_SETTINGS, Tier.A) == (30, 60)
        assert cooldown_range(DEFAULT_SETTINGS, Tier.C) == (120, 300)

    def test_drawn_duration_within_range(self):
        for _ in range(50):
            duration = self.manager.draw_duration(DEFAULT_SETTINGS, Tier.B)
            assert 60 <= duration <= 120

    def test_impose_and_expire(self):
        duration = self.manager.impose("user:alice", Tier.B, DEFAULT_SETTINGS, START)

        remaining = self.manager.remaining_seconds("user:alice", START)
        assert 60 <= remaining <= 120

        self.clock.advance(seconds=duration + 1)
        assert self.manager.remaining_seconds("user:alice", self.clock()) == 0
        assert self.manager.until("user:alice", self.clock()) is None

    def test_other_keys_unaffected(self):
        self.manager.impose("user:alice", Tier.A, DEFAULT_SETTINGS, START)
        assert self.manager.remaining_seconds("user:bob", START) == 0

    def test_zero_range_never_blocks(self):
        settings = no_cooldown_settings()
        assert self.manager.impose("user:alice", Tier.C, settings, START) == 0
        assert self.manager.remaining_seconds("user:alice", START) == 0

    def test_downgrade_triggers_cooldown_for_new_tier(self):
        """Fifth Tier-A batch moves the identity to Tier B."""
        next_decision = decide(DEFAULT_SETTINGS, 5, 5)

        duration = self.manager.evaluate(
            "user:alice", DEFAULT_SETTINGS, Tier.A, next_decision, 4, 5, START
        )

        assert 60 <= duration <= 120
        assert self.manager.remaining_seconds("user:alice", START) > 0

    def test_same_tier_no_cooldown(self):
        next_decision = decide(DEFAULT_SETTINGS, 6, 6)
        duration = self.manager.evaluate(
            "user:alice", DEFAULT_SETTINGS, Tier.B, next_decision, 5, 6, START
        )
        assert duration == 0.0
        assert self.manager.remaining_seconds("user:alice", START) == 0

    def test_crossing_soft_warning_triggers_cooldown(self):
        next_decision = decide(DEFAULT_SETTINGS, 9, 9)
        duration = self.manager.evaluate(
            "user:alice", DEFAULT_SETTINGS, Tier.B, next_decision, 8, 9, START
        )
        assert 60 <= duration <= 120

    def test_already_warned_no_cooldown(self):
        next_decision = decide(DEFAULT_SETTINGS, 9.5, 9.5)
        duration = self.manager.evaluate(
            "user:alice", DEFAULT_SETTINGS, Tier.B, next_decision, 9.25, 9.5, START
        )
        assert duration == 0.0

    def test_no_cooldown_when_next_request_hits_limit(self):
        next_decision = decide(DEFAULT_SETTINGS, 12, 12)
        duration = self.manager.evaluate(
            "user:alice", DEFAULT_SETTINGS, Tier.C, next_decision, 11, 12, START
        )
        assert duration == 0.0

    def test_boost_end_counts_as_downgrade(self):
        """Forced Tier-A batch followed by a Tier-C decision."""
        next_decision = decide(DEFAULT_SETTINGS, 10.5, 10.5)
        duration = self.manager.evaluate(
            "user:alice", DEFAULT_SETTINGS, Tier.A, next_decision, 10, 10.5, START
        )
        assert 120 <= duration <= 300
