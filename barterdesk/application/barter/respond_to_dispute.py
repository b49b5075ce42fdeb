"""
Use case: Respondent answers a dispute.

Input: RespondToDisputeCommand
Output: DisputeTicket (IN_MEDIATION)
Side effects: Stores respondent evidence, opens mediation.
Failure cases: DisputeNotFoundError, DisputeClosedError, ActorNotPermittedError,
    InvalidTransitionError, MissingFieldError.
"""

import logging

from barterdesk.application.barter.context import (
    BarterContext,
    get_ticket,
    get_trade,
    trade_id_of_ticket,
)
from barterdesk.application.barter.dtos import RespondToDisputeCommand
from barterdesk.domain.barter.dispute_machine import submit_response
from barterdesk.domain.barter.entities import DisputeTicket, NotificationType

logger = logging.getLogger(__name__)


class RespondToDisputeUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: RespondToDisputeCommand) -> DisputeTicket:
        trade_id = trade_id_of_ticket(self._ctx, command.ticket_id)
        now = self._ctx.clock.now()
        with self._ctx.locks.hold(trade_id):
            with self._ctx.uow_factory() as uow:
                ticket = get_ticket(uow, command.ticket_id)
                submit_response(
                    ticket,
                    command.respondent_id,
                    command.statement,
                    tuple(command.attachments),
                    now,
                    self._ctx.dispute_policy,
                )
                uow.disputes.save(ticket)
                trade = get_trade(uow, trade_id)

        logger.info("Dispute answered: ticket_id=%s status=%s", ticket.id, ticket.status.value)
        self._ctx.notifier.notify(
            NotificationType.DISPUTE_UPDATED,
            trade,
            now,
            ticket_id=ticket.id,
            dispute_status=ticket.status.value,
        )
        return ticket
