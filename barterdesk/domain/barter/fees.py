"""
Domain service: Platform fee policy.

FREE users pay a flat escrow protection fee per trade. PRO users with
an active subscription get a number of waived trades per billing cycle,
then pay the flat fee like everyone else. A cycle starts at registration
(or at the first waived trade) and rolls over once ``cycle_length`` has
elapsed, which resets the waived-trade counter.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from barterdesk.domain.barter.entities import SubscriptionTier, User


@dataclass(frozen=True)
class FeeQuote:
    fee_cents: int
    is_waived: bool
    payer_id: str
    reason: str
    remaining_free_trades: Optional[int] = None


class FeePolicy:
    """Computes the platform fee a trade proposer owes."""

    def __init__(
        self,
        flat_fee_cents: int = 1500,
        pro_free_trades_limit: int = 3,
        cycle_length: timedelta = timedelta(days=30),
    ) -> None:
        self._flat_fee_cents = flat_fee_cents
        self._pro_free_trades_limit = pro_free_trades_limit
        self._cycle_length = cycle_length

    def cycle_elapsed(self, payer: User, now: Optional[datetime]) -> bool:
        if now is None or payer.cycle_started_at is None:
            return False
        return now - payer.cycle_started_at >= self._cycle_length

    def trades_used(self, payer: User, now: Optional[datetime] = None) -> int:
        """Waived trades already consumed in the cycle current at ``now``."""
        if self.cycle_elapsed(payer, now):
            return 0
        return payer.trades_this_cycle

    def quote(self, payer: User, now: Optional[datetime] = None) -> FeeQuote:
        is_pro = payer.subscription_tier is SubscriptionTier.PRO
        used = self.trades_used(payer, now)

        if is_pro and not payer.subscription_active:
            return self._standard(payer, "Subscription not active")
        if is_pro and used < self._pro_free_trades_limit:
            return FeeQuote(
                fee_cents=0,
                is_waived=True,
                payer_id=payer.id,
                reason="Pro membership waiver",
                remaining_free_trades=self._pro_free_trades_limit - used - 1,
            )
        if is_pro:
            return self._standard(
                payer,
                f"Monthly free trades exceeded "
                f"({self._pro_free_trades_limit}/{self._pro_free_trades_limit} used)",
            )
        return self._standard(payer, "Standard escrow fee")

    def count_waived_trade(self, payer: User, now: datetime) -> None:
        """Charge one waived trade to the payer, opening a new cycle when due."""
        if payer.cycle_started_at is None or self.cycle_elapsed(payer, now):
            payer.cycle_started_at = now
            payer.trades_this_cycle = 0
        payer.trades_this_cycle += 1

    def _standard(self, payer: User, reason: str) -> FeeQuote:
        return FeeQuote(
            fee_cents=self._flat_fee_cents,
            is_waived=False,
            payer_id=payer.id,
            reason=reason,
        )
