"""
Tier classification.

Maps rolling usage and boost state onto a service tier and the model
configured for it. Pure: the settings snapshot is passed in per call.

Evaluation order:
1. Daily limit
2. Hourly limit
3. Active boost forces Tier A
4. Usage thresholds (A below tier_a_max, B below tier_b_max, else C)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from generation_guard.config.loader import GovernanceSettings


class Tier(Enum):
    """Service classes from best (A) to most restricted (C)."""
    A = "A"
    B = "B"
    C = "C"

    @property
    def rank(self) -> int:
        return "ABC".index(self.value)

    def is_downgrade_from(self, previous: "Tier") -> bool:
        return self.rank > previous.rank


class AdmissionStatus(Enum):
    """Outcome of an admission check."""
    OK = "ok"
    WARNING = "warning"  # admitted, soft warning threshold reached
    COOLDOWN = "cooldown"
    BANNED = "banned"
    HOURLY_LIMIT = "hourly_limit"
    DAILY_LIMIT = "daily_limit"

    @property
    def is_blocking(self) -> bool:
        return self not in (AdmissionStatus.OK, AdmissionStatus.WARNING)


@dataclass(frozen=True)
class TierDecision:
    """Result of classifying one identity's usage."""
    status: AdmissionStatus
    tier: Optional[Tier]
    model: Optional[str]
    soft_warning: bool
    boost_forced: bool = False

    @property
    def admitted(self) -> bool:
        return not self.status.is_blocking


def model_for_tier(settings: GovernanceSettings, tier: Tier) -> str:
    """Look up the model identifier configured for `tier`."""
    return getattr(settings, f"model_tier_{tier.value.lower()}")


def is_soft_warning(settings: GovernanceSettings, hourly_count: float) -> bool:
    return hourly_count >= settings.hourly_batch_limit - settings.soft_warning_threshold


def decide(
    settings: GovernanceSettings,
    hourly_count: float,
    daily_count: float,
    boost_active: bool = False,
) -> TierDecision:
    """Classify usage into a tier, or a limit status when not admitted."""
    soft_warning = is_soft_warning(settings, hourly_count)

    if daily_count >= settings.daily_batch_limit:
        return TierDecision(AdmissionStatus.DAILY_LIMIT, None, None, soft_warning)

    if hourly_count >= settings.hourly_batch_limit:
        return TierDecision(AdmissionStatus.HOURLY_LIMIT, None, None, soft_warning)

    status = AdmissionStatus.WARNING if soft_warning else AdmissionStatus.OK

    if boost_active:
        return TierDecision(status, Tier.A, model_for_tier(settings, Tier.A), soft_warning, boost_forced=True)

    if hourly_count < settings.tier_a_max:
        tier = Tier.A
    elif hourly_count < settings.tier_b_max:
        tier = Tier.B
    else:
        tier = Tier.C

    return TierDecision(status, tier, model_for_tier(settings, tier), soft_warning)
