"""
Admission control for generation requests.

Composes settings, ledger, tiers, cooldowns, abuse detection and boosts
into the two calls request handlers make around an expensive generation:

    result = controller.check_admission(identity)
    if result.can_generate:
        ...call the model provider...
        controller.record_usage(identity, weight, result.tier)

Evaluation order for an admission check (first match wins):
1. Ban
2. Cooldown
3. Daily limit
4. Hourly limit
5. Tier classification (an active boost forces Tier A)

Admitted checks hold a reservation for their weight until the matching
`record_usage` (or `release`), so concurrent checks for one identity
cannot all pass a limit that only has room for one of them.
"""

import logging
import math
import random
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from generation_guard.config.loader import AppConfig, GovernanceSettings
from generation_guard.config.settings_store import SettingsStore
from generation_guard.storage.models import FULL_BATCH_WEIGHT, UsageEvent
from .abuse import AbuseDetector
from .auth import verify_admin_key
from .boosts import BoostBalance, BoostLedger, RedeemResult
from .clock import Clock, utc_now
from .cooldown import CooldownManager
from .errors import ValidationError
from .identity import Identity, user_key
from .ledger import DAY, HOUR, BaseUsageLedger, RollingStats, UsageLedger, summarize_window
from .locks import KeyedLock
from .tiers import AdmissionStatus, Tier, TierDecision, decide

logger = logging.getLogger(__name__)

RESERVATION_TTL = timedelta(minutes=2)

STATUS_MESSAGES = {
    AdmissionStatus.BANNED: "Temporarily blocked due to unusual activity. Please try again later.",
    AdmissionStatus.HOURLY_LIMIT: "Woah woah, slow your roll! You've hit your hourly limit.",
    AdmissionStatus.DAILY_LIMIT: "You've generated a lot today! Come back tomorrow for fresh ideas.",
    AdmissionStatus.COOLDOWN: "Woah woah, slow your roll!",
}


@dataclass(frozen=True)
class AdmissionResult:
    """Point-in-time admission decision."""
    can_generate: bool
    status: AdmissionStatus
    tier: Optional[Tier] = None
    model: Optional[str] = None
    cooldown_seconds: int = 0
    soft_warning: bool = False
    boost_applied: bool = False
    hourly_count: float = 0.0
    daily_count: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_generate": self.can_generate,
            "status": self.status.value,
            "tier": self.tier.value if self.tier else None,
            "model": self.model,
            "cooldown_seconds": self.cooldown_seconds,
            "soft_warning": self.soft_warning,
            "boost_applied": self.boost_applied,
            "hourly_count": self.hourly_count,
            "daily_count": self.daily_count,
        }


@dataclass(frozen=True)
class UsageReceipt:
    """Acknowledgement of a recorded usage."""
    identity_key: str
    tier: Tier
    batch_weight: float
    boost_consumed: bool
    cooldown_seconds: int
    hourly_count: float
    daily_count: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity_key": self.identity_key,
            "tier": self.tier.value,
            "batch_weight": self.batch_weight,
            "boost_consumed": self.boost_consumed,
            "cooldown_seconds": self.cooldown_seconds,
            "hourly_count": self.hourly_count,
            "daily_count": self.daily_count,
        }


class _ReservationBook:
    """Weights admitted but not yet recorded, per identity key."""

    def __init__(self, ttl: timedelta = RESERVATION_TTL):
        self.ttl = ttl
        self._lock = threading.Lock()
        self._pending: Dict[str, List[Tuple[datetime, float]]] = {}

    def pending_weight(self, key: str, now: datetime) -> float:
        with self._lock:
            entries = [e for e in self._pending.get(key, []) if now - e[0] < self.ttl]
            if entries:
                self._pending[key] = entries
            else:
                self._pending.pop(key, None)
            return sum(weight for _, weight in entries)

    def next_expiry(self, key: str, now: datetime) -> Optional[datetime]:
        """When the oldest live reservation for `key` lapses, if any."""
        with self._lock:
            entries = [e for e in self._pending.get(key, []) if now - e[0] < self.ttl]
            if not entries:
                return None
            return entries[0][0] + self.ttl

    def reserve(self, key: str, weight: float, now: datetime) -> None:
        with self._lock:
            self._pending.setdefault(key, []).append((now, weight))

    def release(self, key: str) -> None:
        """Drop the oldest reservation for `key`, if any."""
        with self._lock:
            entries = self._pending.get(key)
            if not entries:
                return
            entries.pop(0)
            if not entries:
                del self._pending[key]


def _parse_tier(tier: Union[Tier, str]) -> Tier:
    if isinstance(tier, Tier):
        return tier
    try:
        return Tier(str(tier).upper())
    except ValueError:
        raise ValidationError(f"Unknown tier: {tier}")


def _seconds_until(moment: Optional[datetime], now: datetime) -> int:
    if moment is None:
        return 0
    return max(0, math.ceil((moment - now).total_seconds()))


class AdmissionController:
    """Facade over the governance components.

    All state is held by injected instances; build one controller per
    process (or per test) and share it across request handlers.
    """

    def __init__(
        self,
        settings_store: Optional[SettingsStore] = None,
        ledger: Optional[BaseUsageLedger] = None,
        boosts: Optional[BoostLedger] = None,
        cooldowns: Optional[CooldownManager] = None,
        abuse: Optional[AbuseDetector] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        app_config: Optional[AppConfig] = None,
    ):
        self.clock = clock or utc_now
        self.settings_store = settings_store or SettingsStore()
        self.ledger = ledger or UsageLedger(clock=self.clock)
        self.boosts = boosts or BoostLedger(clock=self.clock)
        self.cooldowns = cooldowns or CooldownManager(rng=rng)
        self.abuse = abuse or AbuseDetector(rng=rng)
        self.app_config = app_config or AppConfig()
        self._locks = KeyedLock()
        self._reservations = _ReservationBook()

    # =====================
    # Settings
    # =====================

    def get_settings(self) -> GovernanceSettings:
        return self.settings_store.get()

    def update_settings(self, partial: Mapping[str, Any]) -> GovernanceSettings:
        return self.settings_store.update(partial)

    def authorize_admin(self, admin_key: Optional[str]) -> None:
        """Check an admin credential against the configured secret.

        Raises:
            ConfigurationError: If no admin secret is configured
            AuthorizationError: If the credential does not match
        """
        verify_admin_key(admin_key, self.app_config.require_admin_secret())

    # =====================
    # Admission
    # =====================

    def check_admission(
        self,
        identity: Identity,
        weight: float = FULL_BATCH_WEIGHT,
        use_boost: bool = False,
    ) -> AdmissionResult:
        """Decide whether `identity` may run a generation of `weight` now.

        Every call counts as a request arrival for abuse detection. With
        `use_boost`, an authenticated identity below Tier A redeems one boost
        credit on the spot to be admitted at Tier A.
        """
        if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight <= 0:
            raise ValidationError("weight must be a positive number")
        settings = self.settings_store.get()
        now = self.clock()

        ban = self.abuse.register_request(identity.abuse_key, settings, now)
        if ban is not None:
            return self._blocked(AdmissionStatus.BANNED, _seconds_until(ban.until, now))

        key = identity.key
        with self._locks.hold(key):
            cooldown = self.cooldowns.remaining_seconds(key, now)
            if cooldown > 0:
                return self._blocked(AdmissionStatus.COOLDOWN, cooldown)

            pending = self._reservations.pending_weight(key, now)
            hourly = summarize_window(self.ledger.window_events(key, HOUR, now), HOUR, settings.hourly_batch_limit)
            daily = summarize_window(self.ledger.window_events(key, DAY, now), DAY, settings.daily_batch_limit)
            hourly_count = hourly.batch_count + pending
            daily_count = daily.batch_count + pending

            boost_active = (
                identity.is_authenticated and self.boosts.active_batches(identity.user_id) > 0
            )
            decision = decide(settings, hourly_count, daily_count, boost_active)

            if decision.status is AdmissionStatus.DAILY_LIMIT:
                return self._blocked(
                    decision.status,
                    self._limit_wait(key, daily.next_reset_timestamp, pending, now),
                    hourly_count, daily_count,
                )
            if decision.status is AdmissionStatus.HOURLY_LIMIT:
                return self._blocked(
                    decision.status,
                    self._limit_wait(key, hourly.next_reset_timestamp, pending, now),
                    hourly_count, daily_count,
                )

            if use_boost and identity.is_authenticated and decision.tier is not Tier.A:
                decision = self._redeem_inline(identity, settings, hourly_count, daily_count, decision)

            self._reservations.reserve(key, weight, now)

        logger.debug(f"Admitted: key={key}, tier={decision.tier.value}, status={decision.status.value}")
        return AdmissionResult(
            can_generate=True,
            status=decision.status,
            tier=decision.tier,
            model=decision.model,
            soft_warning=decision.soft_warning,
            boost_applied=decision.boost_forced,
            hourly_count=hourly_count,
            daily_count=daily_count,
        )

    def release(self, identity: Identity) -> None:
        """Give back the reservation of an admitted request that did not generate."""
        with self._locks.hold(identity.key):
            self._reservations.release(identity.key)

    def record_usage(
        self,
        identity: Identity,
        weight: float,
        tier: Union[Tier, str],
        ideas_count: int = 0,
        user_agent: Optional[str] = None,
        boost_applied: bool = False,
        direction: Optional[str] = None,
        is_campaign: bool = False,
    ) -> UsageReceipt:
        """Record a successful generation and settle cooldown state.

        The event is validated and appended before any other state changes,
        so a failed append leaves counters, boosts and cooldowns untouched.
        """
        used_tier = _parse_tier(tier)
        settings = self.settings_store.get()
        now = self.clock()
        key = identity.key

        with self._locks.hold(key):
            hourly_before = self.ledger.hourly_count(key, now)
            forced_slot = (
                identity.is_authenticated
                and used_tier is Tier.A
                and self.boosts.active_batches(identity.user_id) > 0
            )

            event = UsageEvent(
                identity_key=key,
                timestamp=now,
                batch_weight=weight,
                tier=used_tier.value,
                ideas_count=ideas_count,
                boost_applied=boost_applied or forced_slot,
                ip_address=identity.ip_address,
                session_id=identity.session_id,
                user_agent=user_agent,
                direction=direction,
                is_campaign=is_campaign,
            )
            self.ledger.record(event)

            self._reservations.release(key)
            consumed = forced_slot and self.boosts.consume_forced_batch(identity.user_id)

            hourly_after = self.ledger.hourly_count(key, now)
            daily_after = self.ledger.daily_count(key, now)
            boost_still_active = (
                identity.is_authenticated and self.boosts.active_batches(identity.user_id) > 0
            )
            next_decision = decide(settings, hourly_after, daily_after, boost_still_active)
            cooldown = self.cooldowns.evaluate(
                key, settings, used_tier, next_decision, hourly_before, hourly_after, now
            )

        return UsageReceipt(
            identity_key=key,
            tier=used_tier,
            batch_weight=weight,
            boost_consumed=consumed,
            cooldown_seconds=math.ceil(cooldown),
            hourly_count=hourly_after,
            daily_count=daily_after,
        )

    # =====================
    # Stats
    # =====================

    def get_hourly_stats(self, user_id: str) -> RollingStats:
        settings = self.settings_store.get()
        now = self.clock()
        events = self.ledger.window_events(user_key(user_id), HOUR, now)
        return summarize_window(events, HOUR, settings.hourly_batch_limit, settings.soft_warning_threshold)

    def get_daily_stats(self, user_id: str) -> RollingStats:
        settings = self.settings_store.get()
        now = self.clock()
        events = self.ledger.window_events(user_key(user_id), DAY, now)
        return summarize_window(events, DAY, settings.daily_batch_limit)

    # =====================
    # Boosts
    # =====================

    def get_boost_balance(self, user_id: str) -> BoostBalance:
        user_key(user_id)
        return self.boosts.summary(user_id, self.settings_store.get())

    def redeem_boost(self, user_id: str) -> RedeemResult:
        with self._locks.hold(user_key(user_id)):
            return self.boosts.redeem(user_id, self.settings_store.get())

    def add_boost(
        self,
        user_id: str,
        amount: int,
        reason: Optional[str] = None,
        admin_id: Optional[str] = None,
    ) -> int:
        """Credit boosts to a user. Callers authorize with `authorize_admin` first."""
        with self._locks.hold(user_key(user_id)):
            return self.boosts.add(user_id, amount, reason, admin_id)

    # =====================
    # Private helper methods
    # =====================

    def _redeem_inline(
        self,
        identity: Identity,
        settings: GovernanceSettings,
        hourly_count: float,
        daily_count: float,
        decision: TierDecision,
    ) -> TierDecision:
        redeemed = self.boosts.redeem(identity.user_id, settings)
        if not redeemed.success:
            return decision
        return decide(settings, hourly_count, daily_count, boost_active=True)

    def _limit_wait(
        self,
        key: str,
        next_reset: Optional[datetime],
        pending: float,
        now: datetime,
    ) -> int:
        """Seconds until recorded usage ages out or a pending reservation lapses."""
        moments = [next_reset]
        if pending > 0:
            moments.append(self._reservations.next_expiry(key, now))
        moments = [m for m in moments if m is not None]
        return _seconds_until(min(moments), now) if moments else 0

    def _blocked(
        self,
        status: AdmissionStatus,
        cooldown_seconds: int = 0,
        hourly_count: float = 0.0,
        daily_count: float = 0.0,
    ) -> AdmissionResult:
        logger.debug(f"Blocked: status={status.value}, wait={cooldown_seconds}s")
        return AdmissionResult(
            can_generate=False,
            status=status,
            cooldown_seconds=cooldown_seconds,
            hourly_count=hourly_count,
            daily_count=daily_count,
        )
