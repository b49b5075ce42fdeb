"""
Use case: Confirm satisfaction with received items.

Input: ConfirmSatisfactionCommand
Output: Trade
Side effects: Records the party's confirmation; once both parties have
    confirmed the trade moves to COMPLETED_AWAITING_RATING and the rating
    window opens.
Failure cases: TradeNotFoundError, TradeTerminalError, InvalidTransitionError,
    ActorNotPermittedError.
"""

import logging

from barterdesk.application.barter.context import BarterContext, get_trade
from barterdesk.application.barter.dtos import ConfirmSatisfactionCommand
from barterdesk.domain.barter.entities import NotificationType, Party, Trade, TradeStatus
from barterdesk.domain.barter.errors import ActorNotPermittedError
from barterdesk.domain.barter.trade_machine import (
    require_status,
    satisfaction_complete,
    transition,
)

logger = logging.getLogger(__name__)


class ConfirmSatisfactionUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: ConfirmSatisfactionCommand) -> Trade:
        now = self._ctx.clock.now()
        with self._ctx.locks.hold(command.trade_id):
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, command.trade_id)
                require_status(trade, TradeStatus.IN_TRANSIT, "confirm satisfaction for")
                party = trade.party_of(command.actor_id)
                if party is None:
                    raise ActorNotPermittedError(
                        command.actor_id, f"confirm satisfaction for trade {trade.id}"
                    )

                if party is Party.PROPOSER:
                    trade.proposer_verified_satisfaction = True
                else:
                    trade.receiver_verified_satisfaction = True
                trade.updated_at = now

                verified = satisfaction_complete(trade)
                if verified:
                    transition(
                        trade,
                        TradeStatus.COMPLETED_AWAITING_RATING,
                        command.actor_id,
                        now,
                        "both parties satisfied",
                    )
                    trade.rating_deadline = now + self._ctx.trade_policy.rating_window
                uow.trades.save(trade)

        logger.info(
            "Satisfaction confirmed: trade_id=%s party=%s both=%s",
            trade.id,
            party.value,
            verified,
        )
        if verified:
            self._ctx.notifier.notify(NotificationType.ITEMS_VERIFIED, trade, now)
        return trade
