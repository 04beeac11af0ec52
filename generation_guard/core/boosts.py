"""
Boost credit ledger.

Per-user credit balances, redemption into a forced Tier-A allowance,
and admin-granted top-ups. Every credit movement is kept as an audit
record.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from generation_guard.config.loader import GovernanceSettings
from generation_guard.storage.models import BoostTransaction
from .clock import Clock, utc_now
from .errors import ValidationError

logger = logging.getLogger(__name__)

INSUFFICIENT_BALANCE = "insufficient balance"


@dataclass(frozen=True)
class RedeemResult:
    """Outcome of a redemption; failure is a value, not an exception."""
    success: bool
    new_balance: int
    batches_granted: int = 0
    active_boost_batches: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "new_balance": self.new_balance,
            "batches_granted": self.batches_granted,
            "active_boost_batches": self.active_boost_batches,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class BoostBalance:
    balance: int
    active_boost_batches: int
    batches_per_boost: int

    def to_dict(self) -> dict:
        return {
            "balance": self.balance,
            "active_boost_batches": self.active_boost_batches,
            "batches_per_boost": self.batches_per_boost,
        }


class BoostLedger:
    """Credit balances and active redemptions keyed by user id."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now
        self._lock = threading.Lock()
        self._balances: Dict[str, int] = {}
        self._redemptions: Dict[str, int] = {}
        self._transactions: List[BoostTransaction] = []

    def balance(self, user_id: str) -> int:
        with self._lock:
            return self._balances.get(user_id, 0)

    def active_batches(self, user_id: str) -> int:
        """Forced Tier-A batches left from redemptions."""
        with self._lock:
            return self._redemptions.get(user_id, 0)

    def redeem(self, user_id: str, settings: GovernanceSettings) -> RedeemResult:
        """Spend one credit for `boost_tier_a_batches` forced Tier-A batches.

        Redemptions stack onto an allowance that is still active.
        """
        if not user_id:
            raise ValidationError("User ID required")

        granted = int(settings.boost_tier_a_batches)
        with self._lock:
            current = self._balances.get(user_id, 0)
            if current <= 0:
                return RedeemResult(
                    success=False,
                    new_balance=current,
                    active_boost_batches=self._redemptions.get(user_id, 0),
                    error=INSUFFICIENT_BALANCE,
                )

            new_balance = current - 1
            self._balances[user_id] = new_balance
            active = self._redemptions.get(user_id, 0) + granted
            if active > 0:
                self._redemptions[user_id] = active
            self._transactions.append(BoostTransaction(
                user_id=user_id,
                delta=-1,
                balance_after=new_balance,
                reason="redeem",
                timestamp=self.clock(),
            ))

        logger.info(f"Boost redeemed: user={user_id}, balance={new_balance}, batches={granted}")
        return RedeemResult(
            success=True,
            new_balance=new_balance,
            batches_granted=granted,
            active_boost_batches=active,
        )

    def add(self, user_id: str, amount: int, reason: Optional[str] = None, admin_id: Optional[str] = None) -> int:
        """Credit `amount` boosts to a user. Authorization is the caller's job.

        Returns:
            The new balance

        Raises:
            ValidationError: If user_id is missing or amount is not an integer >= 1
        """
        if not user_id:
            raise ValidationError("User ID required")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            raise ValidationError("Valid amount required")

        with self._lock:
            new_balance = self._balances.get(user_id, 0) + amount
            self._balances[user_id] = new_balance
            self._transactions.append(BoostTransaction(
                user_id=user_id,
                delta=amount,
                balance_after=new_balance,
                reason=reason or "admin_add",
                timestamp=self.clock(),
                admin_id=admin_id,
            ))

        logger.info(
            f"Boosts added: user={user_id}, amount={amount}, balance={new_balance}, "
            f"admin={admin_id}, reason={reason or 'admin_add'}"
        )
        return new_balance

    def consume_forced_batch(self, user_id: str) -> bool:
        """Use one forced Tier-A batch; the redemption is removed at zero."""
        with self._lock:
            remaining = self._redemptions.get(user_id, 0)
            if remaining <= 0:
                return False
            if remaining == 1:
                del self._redemptions[user_id]
            else:
                self._redemptions[user_id] = remaining - 1
            return True

    def summary(self, user_id: str, settings: GovernanceSettings) -> BoostBalance:
        with self._lock:
            return BoostBalance(
                balance=self._balances.get(user_id, 0),
                active_boost_batches=self._redemptions.get(user_id, 0),
                batches_per_boost=int(settings.boost_tier_a_batches),
            )

    def transactions(self, user_id: Optional[str] = None) -> List[BoostTransaction]:
        """Audit trail, optionally filtered to one user, oldest first."""
        with self._lock:
            if user_id is None:
                return list(self._transactions)
            return [t for t in self._transactions if t.user_id == user_id]
