"""
Use case: Open a dispute on a trade.

Input: OpenDisputeCommand
Output: DisputeTicket (OPEN_AWAITING_RESPONSE)
Side effects: Freezes the trade in DISPUTE_OPENED, starts the response
    deadline, notifies the respondent.
Failure cases: TradeNotFoundError, TradeTerminalError, DisputeAlreadyOpenError,
    InvalidTransitionError, ActorNotPermittedError, MissingFieldError.
"""

import logging

from barterdesk.application.barter.context import BarterContext, get_trade
from barterdesk.application.barter.dtos import OpenDisputeCommand
from barterdesk.domain.barter.dispute_machine import open_ticket
from barterdesk.domain.barter.entities import DisputeTicket, NotificationType, TradeStatus
from barterdesk.domain.barter.errors import DisputeAlreadyOpenError, InvalidTransitionError
from barterdesk.domain.barter.trade_machine import (
    DISPUTABLE_STATUSES,
    ensure_mutable,
    transition,
)

logger = logging.getLogger(__name__)


class OpenDisputeUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: OpenDisputeCommand) -> DisputeTicket:
        now = self._ctx.clock.now()
        with self._ctx.locks.hold(command.trade_id):
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, command.trade_id)
                ensure_mutable(trade)
                if trade.status is TradeStatus.DISPUTE_OPENED:
                    raise DisputeAlreadyOpenError(trade.id, trade.dispute_ticket_id or "")
                if trade.status not in DISPUTABLE_STATUSES:
                    raise InvalidTransitionError(trade.id, trade.status.value, "dispute")

                ticket = open_ticket(
                    self._ctx.new_id(),
                    trade,
                    command.initiator_id,
                    command.dispute_type,
                    command.statement,
                    tuple(command.attachments),
                    now,
                    self._ctx.dispute_policy,
                )
                transition(
                    trade,
                    TradeStatus.DISPUTE_OPENED,
                    command.initiator_id,
                    now,
                    command.dispute_type.value,
                )
                trade.dispute_ticket_id = ticket.id
                uow.disputes.save(ticket)
                uow.trades.save(trade)

        logger.info(
            "Dispute opened: ticket_id=%s trade_id=%s type=%s previous_status=%s",
            ticket.id,
            trade.id,
            ticket.dispute_type.value,
            ticket.trade_status_before_dispute.value,
        )
        self._ctx.notifier.notify(
            NotificationType.DISPUTE_OPENED,
            trade,
            now,
            recipients=[ticket.respondent_id],
            ticket_id=ticket.id,
            dispute_type=ticket.dispute_type.value,
        )
        return ticket
