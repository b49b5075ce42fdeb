"""
Use case: Submit a shipment tracking number.

Input: SubmitTrackingCommand
Output: Trade
Side effects: Stores the tracking number; moves the trade to IN_TRANSIT
    once every side that has items to ship has submitted one.
Failure cases: TradeNotFoundError, TradeTerminalError, InvalidTransitionError,
    ActorNotPermittedError, NothingToShipError, MissingFieldError.
"""

import logging

from barterdesk.application.barter.context import BarterContext, get_trade
from barterdesk.application.barter.dtos import SubmitTrackingCommand
from barterdesk.domain.barter.entities import NotificationType, Party, Trade, TradeStatus
from barterdesk.domain.barter.errors import (
    ActorNotPermittedError,
    MissingFieldError,
    NothingToShipError,
)
from barterdesk.domain.barter.trade_machine import advance_shipping, must_ship, require_status

logger = logging.getLogger(__name__)


class SubmitTrackingUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: SubmitTrackingCommand) -> Trade:
        tracking_number = (command.tracking_number or "").strip()
        if not tracking_number:
            raise MissingFieldError("tracking_number")

        now = self._ctx.clock.now()
        with self._ctx.locks.hold(command.trade_id):
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, command.trade_id)
                require_status(trade, TradeStatus.SHIPPING_PENDING, "submit tracking for")
                party = trade.party_of(command.actor_id)
                if party is None:
                    raise ActorNotPermittedError(
                        command.actor_id, f"submit tracking for trade {trade.id}"
                    )
                if not must_ship(trade, party):
                    raise NothingToShipError(trade.id, command.actor_id)

                if party is Party.PROPOSER:
                    trade.proposer_tracking_number = tracking_number
                else:
                    trade.receiver_tracking_number = tracking_number
                trade.updated_at = now
                moved = advance_shipping(
                    trade, command.actor_id, now, self._ctx.trade_policy.delivery_window
                )
                uow.trades.save(trade)

        logger.info(
            "Tracking submitted: trade_id=%s party=%s in_transit=%s",
            trade.id,
            party.value,
            moved,
        )
        self._ctx.notifier.notify(
            NotificationType.TRACKING_ADDED,
            trade,
            now,
            recipients=[trade.counterparty_of(command.actor_id)],
            tracking_number=tracking_number,
        )
        return trade
