"""
Domain service: Settlement planning.

Turns a trade outcome into the concrete money and ownership effects
the application layer must carry out. Pure: the plan is computed here,
executed against the ledger and repositories elsewhere.

Normal completion settles exactly like a dispute resolved TRADE_UPHELD.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from barterdesk.domain.barter.entities import (
    FullRefund,
    PartialRefund,
    Resolution,
    Trade,
    TradeReversal,
    TradeUpheld,
)


@dataclass(frozen=True)
class SettlementPlan:
    """What to do with escrow, items and committed cash.

    Attributes:
        release_cents: Escrow amount paid out to the escrow recipient.
        refund_cents: Escrow amount returned to the escrow payer.
        transfer_items: Move every item to the other party when True,
            otherwise hand the items back to their original owners.
        deliver_cash: Credit each side's committed cash to the other
            party when True, otherwise return it to the contributor.
    """

    release_cents: int
    refund_cents: int
    transfer_items: bool
    deliver_cash: bool


def funded_escrow(trade: Trade) -> int:
    """Escrow actually held on the ledger for this trade."""
    return trade.escrow_amount_cents if trade.escrow_hold_id else 0


def split(amount_cents: int, ratio: Decimal) -> int:
    """Portion of an amount, rounded half-up to whole cents."""
    return int((Decimal(amount_cents) * ratio).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def plan_settlement(trade: Trade, resolution: Resolution) -> SettlementPlan:
    """Build the settlement plan for a resolution variant.

    Raises:
        TypeError: For an unknown resolution variant.
    """
    escrow = funded_escrow(trade)

    if isinstance(resolution, TradeUpheld):
        return SettlementPlan(
            release_cents=escrow, refund_cents=0, transfer_items=True, deliver_cash=True
        )
    if isinstance(resolution, FullRefund):
        return SettlementPlan(
            release_cents=0, refund_cents=escrow, transfer_items=False, deliver_cash=False
        )
    if isinstance(resolution, PartialRefund):
        refund = split(escrow, resolution.refund_ratio)
        return SettlementPlan(
            release_cents=escrow - refund,
            refund_cents=refund,
            transfer_items=True,
            deliver_cash=True,
        )
    if isinstance(resolution, TradeReversal):
        return SettlementPlan(
            release_cents=0, refund_cents=escrow, transfer_items=False, deliver_cash=False
        )
    raise TypeError(f"Unhandled resolution variant: {type(resolution).__name__}")
