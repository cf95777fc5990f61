"""Referral reward calculator"""
import logging
from typing import Optional

from payhook.core.config import settings
from payhook.services.collaborators.base import CollaboratorResult

logger = logging.getLogger(__name__)


class ReferralCalculator:
    """Percentage-of-order reward for the referrer"""

    def __init__(self, reward_percent: Optional[float] = None, enabled: Optional[bool] = None):
        self.reward_percent = settings.REFERRAL_REWARD_PERCENT if reward_percent is None else reward_percent
        self.enabled = settings.REFERRAL_ENABLED if enabled is None else enabled

    async def compute_reward(self, code: Optional[str], amount_cents: Optional[int]) -> CollaboratorResult:
        if not self.enabled:
            return CollaboratorResult.skip("referrals disabled")
        if not code:
            return CollaboratorResult.skip("no referrer code")
        if not amount_cents or amount_cents <= 0:
            return CollaboratorResult.failure(f"cannot reward referral {code} on amount {amount_cents}")

        reward_cents = int(round(amount_cents * self.reward_percent / 100))
        logger.info(f"Referral {code}: {reward_cents} cents on {amount_cents}")
        return CollaboratorResult.success({
            "code": code,
            "reward_cents": reward_cents,
            "reward_type": "percentage",
            "reward_value": self.reward_percent,
        })
