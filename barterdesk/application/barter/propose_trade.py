"""
Use case: Propose a trade.

Input: ProposeTradeCommand
Output: Trade (PENDING_ACCEPTANCE)
Side effects: Persists the trade, notifies the receiver.
Failure cases: InvalidTradeTermsError, UserNotFoundError, ItemNotFoundError,
    ItemNotOwnedError, ItemNoLongerAvailableError, InsufficientBalanceError.
"""

import logging
from datetime import datetime
from typing import Optional

from barterdesk.application.barter.context import (
    BarterContext,
    get_item,
    get_user,
    require_balance,
)
from barterdesk.application.barter.dtos import ProposeTradeCommand
from barterdesk.domain.barter.entities import (
    NotificationType,
    Trade,
    TradeStatus,
    TradeTerms,
    TradeTransition,
)
from barterdesk.domain.barter.errors import ItemNoLongerAvailableError, ItemNotOwnedError
from barterdesk.domain.barter.ports import BarterUnitOfWork
from barterdesk.domain.barter.trade_machine import validate_terms

logger = logging.getLogger(__name__)


def check_offer(
    uow: BarterUnitOfWork, proposer_id: str, receiver_id: str, terms: TradeTerms
) -> None:
    """Validate an offer against current ownership and balances.

    Raises:
        InvalidTradeTermsError: If the terms are malformed.
        UserNotFoundError: If either party does not exist.
        ItemNotOwnedError: If an item is not owned by the side offering it.
        ItemNoLongerAvailableError: If an item is committed to another trade.
        InsufficientBalanceError: If the proposer cannot cover their cash.
    """
    validate_terms(proposer_id, receiver_id, terms)
    get_user(uow, proposer_id)
    get_user(uow, receiver_id)

    sides = ((proposer_id, terms.proposer_item_ids), (receiver_id, terms.receiver_item_ids))
    for owner_id, item_ids in sides:
        for item_id in item_ids:
            item = get_item(uow, item_id)
            if item.owner_id != owner_id:
                raise ItemNotOwnedError(item_id, owner_id)
            if item.reserved_by_trade_id is not None:
                raise ItemNoLongerAvailableError(item_id, trade_id=item.reserved_by_trade_id)

    require_balance(uow, proposer_id, terms.proposer_cash)


def build_trade(
    context: BarterContext,
    uow: BarterUnitOfWork,
    proposer_id: str,
    receiver_id: str,
    terms: TradeTerms,
    now: datetime,
    parent_trade_id: Optional[str] = None,
    counter_message: Optional[str] = None,
) -> Trade:
    """Create a pending trade with its fee quote. Caller persists it."""
    quote = context.fees.quote(get_user(uow, proposer_id), now)
    trade = Trade(
        id=context.new_id(),
        proposer_id=proposer_id,
        receiver_id=receiver_id,
        proposer_item_ids=tuple(terms.proposer_item_ids),
        receiver_item_ids=tuple(terms.receiver_item_ids),
        proposer_cash=terms.proposer_cash,
        receiver_cash=terms.receiver_cash,
        created_at=now,
        updated_at=now,
        parent_trade_id=parent_trade_id,
        counter_message=counter_message,
        platform_fee_cents=quote.fee_cents,
        is_fee_waived=quote.is_waived,
        fee_payer_id=quote.payer_id,
    )
    trade.history.append(
        TradeTransition(
            from_status=None,
            to_status=TradeStatus.PENDING_ACCEPTANCE,
            actor_id=proposer_id,
            at=now,
            reason="countered" if parent_trade_id else "proposed",
        )
    )
    return trade


class ProposeTradeUseCase:
    """Creates a new trade proposal after checking ownership and balance."""

    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: ProposeTradeCommand) -> Trade:
        """Run the propose trade use case.

        Args:
            command: The proposal terms.

        Returns:
            The persisted pending trade.
        """
        now = self._ctx.clock.now()
        terms = command.terms
        with self._ctx.uow_factory() as uow:
            check_offer(uow, command.proposer_id, command.receiver_id, terms)
            trade = build_trade(
                self._ctx, uow, command.proposer_id, command.receiver_id, terms, now
            )
            uow.trades.save(trade)

        logger.info(
            "Trade proposed: trade_id=%s proposer=%s receiver=%s fee=%d waived=%s",
            trade.id,
            trade.proposer_id,
            trade.receiver_id,
            trade.platform_fee_cents,
            trade.is_fee_waived,
        )
        self._ctx.notifier.notify(
            NotificationType.TRADE_PROPOSED, trade, now, recipients=[trade.receiver_id]
        )
        return trade
