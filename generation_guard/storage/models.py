"""
Data models for storage layer.

Defines the immutable records the governance components keep.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from generation_guard.core.errors import ValidationError


FULL_BATCH_WEIGHT = 1.0
REGENERATION_WEIGHT = 0.25


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one successful generation.

    Append-only events that form the usage ledger. Once written, these
    records are never modified; they simply age out of the rolling windows.
    """
    identity_key: str
    timestamp: datetime
    batch_weight: float
    tier: str
    ideas_count: int = 0
    boost_applied: bool = False
    ip_address: Optional[str] = None
    session_id: Optional[str] = None
    user_agent: Optional[str] = None
    direction: Optional[str] = None
    is_campaign: bool = False

    def __post_init__(self):
        """Validate event fields before the event can reach a ledger."""
        if not self.identity_key:
            raise ValidationError("identity_key is required")
        if self.timestamp.tzinfo is None:
            raise ValidationError("timestamp must be timezone-aware")
        if isinstance(self.batch_weight, bool) or not isinstance(self.batch_weight, (int, float)):
            raise ValidationError("batch_weight must be a number")
        if self.batch_weight <= 0:
            raise ValidationError("batch_weight must be > 0")
        if self.tier not in ("A", "B", "C"):
            raise ValidationError(f"Unknown tier: {self.tier}")
        if isinstance(self.ideas_count, bool) or not isinstance(self.ideas_count, int) or self.ideas_count < 0:
            raise ValidationError("ideas_count must be a non-negative integer")


@dataclass(frozen=True)
class BanRecord:
    """Temporary ban issued by the abuse detector."""
    key: str
    until: datetime
    reason: str
    created_at: datetime
    request_count: int = 0

    @property
    def duration_seconds(self) -> float:
        return (self.until - self.created_at).total_seconds()


@dataclass(frozen=True)
class BoostTransaction:
    """Audit record of one boost credit movement."""
    user_id: str
    delta: int
    balance_after: int
    reason: str
    timestamp: datetime
    admin_id: Optional[str] = None
