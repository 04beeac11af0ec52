"""
Governed OpenAI client wrapper.

Puts an admission check in front of every chat completion and records
usage only after the provider call succeeds.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import APIStatusError, OpenAI, OpenAIError

from ..core.admission import STATUS_MESSAGES, AdmissionController, AdmissionResult
from ..core.errors import RateLimitError, UpstreamError
from ..core.identity import Identity
from ..core.tiers import Tier
from ..storage.models import FULL_BATCH_WEIGHT, REGENERATION_WEIGHT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierSampling:
    """Sampling parameters used for a tier."""
    temperature: float
    max_tokens: int


TIER_SAMPLING = {
    Tier.A: TierSampling(temperature=0.9, max_tokens=2500),
    Tier.B: TierSampling(temperature=0.85, max_tokens=2000),
    Tier.C: TierSampling(temperature=0.75, max_tokens=1500),
}


@dataclass
class GovernedCompletion:
    """Provider response together with the governance context it ran under."""
    response: Any
    admission: AdmissionResult
    cooldown_seconds: int


class GovernedOpenAI:
    """OpenAI client wrapper that enforces admission control.

    Failures are loud: blocked requests raise RateLimitError and provider
    failures raise UpstreamError carrying the provider's status. Retries
    are left to the caller.
    """

    def __init__(self, controller: AdmissionController, client: Optional[OpenAI] = None):
        """Initialize governed OpenAI client.

        Args:
            controller: Admission controller shared by the process
            client: OpenAI client (created from the environment when omitted)
        """
        if controller is None:
            raise ValueError("controller is required")
        self.controller = controller
        self.client = client or OpenAI()

    def generate(
        self,
        identity: Identity,
        messages: List[Dict[str, str]],
        weight: float = FULL_BATCH_WEIGHT,
        use_boost: bool = False,
        ideas_count: int = 0,
        user_agent: Optional[str] = None,
        direction: Optional[str] = None,
        is_campaign: bool = False,
        **kwargs: Any
    ) -> GovernedCompletion:
        """Create a chat completion if governance admits the identity.

        Args:
            identity: Who is generating
            messages: Chat messages (required)
            weight: Batch weight recorded on success
            use_boost: Redeem a boost credit when below Tier A
            ideas_count: Number of ideas the caller expects to deliver
            user_agent: Client user agent, kept on the usage event
            direction: Free-text direction, kept on the usage event
            is_campaign: Campaign-mode flag, kept on the usage event
            **kwargs: Additional OpenAI parameters

        Raises:
            ValueError: If messages is empty
            RateLimitError: If governance blocks the request
            UpstreamError: If the provider call fails
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        admission = self.controller.check_admission(identity, weight=weight, use_boost=use_boost)
        if not admission.can_generate:
            raise RateLimitError(STATUS_MESSAGES[admission.status], admission)

        sampling = TIER_SAMPLING[admission.tier]
        params = {
            "temperature": sampling.temperature,
            "max_tokens": sampling.max_tokens,
        }
        params.update(kwargs)

        try:
            response = self.client.chat.completions.create(
                model=admission.model,
                messages=messages,
                **params
            )
        except Exception as e:
            self.controller.release(identity)
            if isinstance(e, APIStatusError):
                logger.error(f"Provider returned {e.status_code} for {identity.key}: {e.message}")
                raise UpstreamError(e.message, status_code=e.status_code) from e
            if isinstance(e, OpenAIError):
                logger.error(f"Provider call failed for {identity.key}: {e}")
                raise UpstreamError(str(e)) from e
            raise

        receipt = self.controller.record_usage(
            identity,
            weight=weight,
            tier=admission.tier,
            ideas_count=ideas_count,
            user_agent=user_agent,
            boost_applied=admission.boost_applied,
            direction=direction,
            is_campaign=is_campaign,
        )

        return GovernedCompletion(
            response=response,
            admission=admission,
            cooldown_seconds=receipt.cooldown_seconds,
        )

    def regenerate_one(self, identity: Identity, messages: List[Dict[str, str]], **kwargs: Any) -> GovernedCompletion:
        """Regenerate a single idea; counts as a quarter batch."""
        return self.generate(identity, messages, weight=REGENERATION_WEIGHT, ideas_count=1, **kwargs)
