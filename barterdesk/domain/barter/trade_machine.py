"""
Domain service: Trade lifecycle state machine.

Pure business logic for the trade automaton: the transition table,
terminal and disputable state sets, term validation, side valuation and
the cash differential. No framework imports. No IO. No side effects
beyond mutating the Trade instance handed in.

    PENDING_ACCEPTANCE ──▶ ACCEPTED ──▶ PAYMENT_PENDING ──▶ ESCROW_FUNDED
          │    │    │          │               │                  │
          ▼    ▼    ▼          └──────────────►└──▶ SHIPPING_PENDING ◀┘
    REJECTED CANCELLED COUNTERED                        │
                                                        ▼
             COMPLETED ◀── COMPLETED_AWAITING_RATING ◀── IN_TRANSIT

    Any state from ACCEPTED to COMPLETED_AWAITING_RATING may move to
    DISPUTE_OPENED, which only leaves to DISPUTE_RESOLVED.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from barterdesk.domain.barter.entities import (
    CancellationReason,
    CashDifferential,
    Party,
    Trade,
    TradeStatus,
    TradeTerms,
    TradeTransition,
)
from barterdesk.domain.barter.errors import (
    InvalidTradeTermsError,
    InvalidTransitionError,
    ItemNoLongerAvailableError,
    TradeTerminalError,
)

TERMINAL_STATUSES = frozenset(
    {
        TradeStatus.COUNTERED,
        TradeStatus.REJECTED,
        TradeStatus.CANCELLED,
        TradeStatus.COMPLETED,
        TradeStatus.DISPUTE_RESOLVED,
    }
)

DISPUTABLE_STATUSES = frozenset(
    {
        TradeStatus.ACCEPTED,
        TradeStatus.PAYMENT_PENDING,
        TradeStatus.ESCROW_FUNDED,
        TradeStatus.SHIPPING_PENDING,
        TradeStatus.IN_TRANSIT,
        TradeStatus.COMPLETED_AWAITING_RATING,
    }
)

ALLOWED_TRANSITIONS: dict[TradeStatus, frozenset[TradeStatus]] = {
    TradeStatus.PENDING_ACCEPTANCE: frozenset(
        {
            TradeStatus.ACCEPTED,
            TradeStatus.REJECTED,
            TradeStatus.CANCELLED,
            TradeStatus.COUNTERED,
        }
    ),
    TradeStatus.ACCEPTED: frozenset(
        {
            TradeStatus.PAYMENT_PENDING,
            TradeStatus.SHIPPING_PENDING,
            TradeStatus.DISPUTE_OPENED,
        }
    ),
    TradeStatus.PAYMENT_PENDING: frozenset(
        {
            TradeStatus.ESCROW_FUNDED,
            TradeStatus.CANCELLED,
            TradeStatus.DISPUTE_OPENED,
        }
    ),
    TradeStatus.ESCROW_FUNDED: frozenset(
        {TradeStatus.SHIPPING_PENDING, TradeStatus.DISPUTE_OPENED}
    ),
    TradeStatus.SHIPPING_PENDING: frozenset(
        {TradeStatus.IN_TRANSIT, TradeStatus.DISPUTE_OPENED}
    ),
    TradeStatus.IN_TRANSIT: frozenset(
        {TradeStatus.COMPLETED_AWAITING_RATING, TradeStatus.DISPUTE_OPENED}
    ),
    TradeStatus.COMPLETED_AWAITING_RATING: frozenset(
        {TradeStatus.COMPLETED, TradeStatus.DISPUTE_OPENED}
    ),
    TradeStatus.DISPUTE_OPENED: frozenset({TradeStatus.DISPUTE_RESOLVED}),
}


class EscrowPayerRule(Enum):
    """Which side funds escrow for a non-zero differential.

    SURPLUS_SIDE: the side giving more value funds it (positive
        differential means the proposer pays).
    DEFICIT_SIDE: the side giving less value tops the trade up.
    """

    SURPLUS_SIDE = "surplus_side"
    DEFICIT_SIDE = "deficit_side"


def is_terminal(status: TradeStatus) -> bool:
    return status in TERMINAL_STATUSES


def ensure_mutable(trade: Trade) -> None:
    """Refuse any mutation of a terminal trade.

    A proposal invalidated because one of its items went into another
    trade reports the specific guard instead of the generic terminal error.

    Raises:
        ItemNoLongerAvailableError: If the trade was invalidated.
        TradeTerminalError: If the trade is otherwise terminal.
    """
    if not is_terminal(trade.status):
        return
    if trade.cancellation_reason is CancellationReason.ITEM_NO_LONGER_AVAILABLE:
        raise ItemNoLongerAvailableError(
            trade.unavailable_item_id or "unknown", trade_id=trade.id
        )
    raise TradeTerminalError(trade.id, trade.status.value)


def transition(
    trade: Trade,
    to_status: TradeStatus,
    actor_id: Optional[str],
    now: datetime,
    reason: Optional[str] = None,
) -> TradeTransition:
    """Move a trade to a new status and record the step.

    Raises:
        TradeTerminalError: If the trade is already terminal.
        InvalidTransitionError: If the table does not allow the move.
    """
    ensure_mutable(trade)
    allowed = ALLOWED_TRANSITIONS.get(trade.status, frozenset())
    if to_status not in allowed:
        raise InvalidTransitionError(
            trade.id, trade.status.value, f"move to {to_status.value}"
        )
    step = TradeTransition(
        from_status=trade.status,
        to_status=to_status,
        actor_id=actor_id,
        at=now,
        reason=reason,
    )
    trade.status = to_status
    trade.updated_at = now
    trade.history.append(step)
    return step


def require_status(trade: Trade, expected: TradeStatus, action: str) -> None:
    """Guard an operation that is only legal from one status."""
    ensure_mutable(trade)
    if trade.status is not expected:
        raise InvalidTransitionError(trade.id, trade.status.value, action)


def validate_terms(proposer_id: str, receiver_id: str, terms: TradeTerms) -> None:
    """Check the shape of a proposal before any ownership lookup.

    Raises:
        InvalidTradeTermsError: On self-trades, negative cash, duplicated
            or overlapping items, or an empty trade.
    """
    if not proposer_id or not receiver_id:
        raise InvalidTradeTermsError("both parties are required")
    if proposer_id == receiver_id:
        raise InvalidTradeTermsError("a user cannot trade with themselves")
    if terms.proposer_cash < 0 or terms.receiver_cash < 0:
        raise InvalidTradeTermsError("cash amounts must be non-negative")
    if len(set(terms.proposer_item_ids)) != len(terms.proposer_item_ids):
        raise InvalidTradeTermsError("proposer items contain duplicates")
    if len(set(terms.receiver_item_ids)) != len(terms.receiver_item_ids):
        raise InvalidTradeTermsError("receiver items contain duplicates")
    overlap = set(terms.proposer_item_ids) & set(terms.receiver_item_ids)
    if overlap:
        raise InvalidTradeTermsError(
            f"items offered on both sides: {', '.join(sorted(overlap))}"
        )
    if not (
        terms.proposer_item_ids
        or terms.receiver_item_ids
        or terms.proposer_cash
        or terms.receiver_cash
    ):
        raise InvalidTradeTermsError("a trade must offer something")


# ──────────────────────────────────────────────────────────────────────
# Valuation
# ──────────────────────────────────────────────────────────────────────


def value_given(trade: Trade, party: Party, values: dict[str, int]) -> int:
    """Sum of item EMVs plus cash contributed by one side."""
    items = sum(values.get(item_id, 0) for item_id in trade.items_of(party))
    return items + trade.cash_of(party)


def value_received(trade: Trade, party: Party, values: dict[str, int]) -> int:
    other = Party.RECEIVER if party is Party.PROPOSER else Party.PROPOSER
    return value_given(trade, other, values)


def compute_cash_differential(
    trade: Trade,
    values: dict[str, int],
    payer_rule: EscrowPayerRule = EscrowPayerRule.SURPLUS_SIDE,
) -> CashDifferential:
    """Compute the escrow amount and who funds it.

    differential = value given by proposer - value given by receiver.

    Args:
        trade: The trade whose frozen terms are valued.
        values: EMV per item id, in cents.
        payer_rule: Which side funds a non-zero differential.

    Returns:
        The differential; zero amount means no escrow is needed.
    """
    differential = value_given(trade, Party.PROPOSER, values) - value_given(
        trade, Party.RECEIVER, values
    )
    if differential == 0:
        return CashDifferential(amount_cents=0)

    proposer_gives_more = differential > 0
    if payer_rule is EscrowPayerRule.SURPLUS_SIDE:
        proposer_pays = proposer_gives_more
    else:
        proposer_pays = not proposer_gives_more

    if proposer_pays:
        payer, recipient = trade.proposer_id, trade.receiver_id
    else:
        payer, recipient = trade.receiver_id, trade.proposer_id
    return CashDifferential(
        amount_cents=abs(differential), payer_id=payer, recipient_id=recipient
    )


# ──────────────────────────────────────────────────────────────────────
# Progress predicates
# ──────────────────────────────────────────────────────────────────────


def must_ship(trade: Trade, party: Party) -> bool:
    """A cash-only side has nothing to ship."""
    return bool(trade.items_of(party))


def shipping_complete(trade: Trade) -> bool:
    proposer_done = (
        not must_ship(trade, Party.PROPOSER) or trade.proposer_submitted_tracking
    )
    receiver_done = (
        not must_ship(trade, Party.RECEIVER) or trade.receiver_submitted_tracking
    )
    return proposer_done and receiver_done


def satisfaction_complete(trade: Trade) -> bool:
    return trade.proposer_verified_satisfaction and trade.receiver_verified_satisfaction


def ratings_complete(trade: Trade) -> bool:
    return trade.proposer_rated and trade.receiver_rated


def advance_shipping(
    trade: Trade, actor_id: Optional[str], now: datetime, delivery_window: timedelta
) -> bool:
    """Move SHIPPING_PENDING to IN_TRANSIT once every side that ships has tracking.

    Returns:
        True if the trade moved.
    """
    if trade.status is not TradeStatus.SHIPPING_PENDING or not shipping_complete(trade):
        return False
    transition(trade, TradeStatus.IN_TRANSIT, actor_id, now, "all shipments tracked")
    trade.delivery_deadline = now + delivery_window
    return True


def enter_shipping(
    trade: Trade, actor_id: Optional[str], now: datetime, delivery_window: timedelta
) -> None:
    transition(trade, TradeStatus.SHIPPING_PENDING, actor_id, now)
    advance_shipping(trade, actor_id, now, delivery_window)
