"""
Use cases: Mediation messages and escalation.

Input: PostMediationMessageCommand / EscalateDisputeCommand
Output: DisputeTicket
Side effects: Appends to the mediation log; escalates to a moderator when
    the round limit is exceeded or a party asks for it.
Failure cases: DisputeNotFoundError, DisputeClosedError, ActorNotPermittedError,
    InvalidTransitionError, MissingFieldError, UserNotFoundError.
"""

import logging

from barterdesk.application.barter.context import (
    BarterContext,
    get_ticket,
    get_trade,
    get_user,
    trade_id_of_ticket,
)
from barterdesk.application.barter.dtos import (
    EscalateDisputeCommand,
    PostMediationMessageCommand,
)
from barterdesk.domain.barter.dispute_machine import escalate, post_message
from barterdesk.domain.barter.entities import DisputeTicket, NotificationType

logger = logging.getLogger(__name__)


class PostMediationMessageUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: PostMediationMessageCommand) -> DisputeTicket:
        trade_id = trade_id_of_ticket(self._ctx, command.ticket_id)
        now = self._ctx.clock.now()
        with self._ctx.locks.hold(trade_id):
            with self._ctx.uow_factory() as uow:
                ticket = get_ticket(uow, command.ticket_id)
                sender = get_user(uow, command.sender_id)
                escalated = post_message(
                    ticket,
                    self._ctx.new_id(),
                    sender,
                    command.text,
                    now,
                    self._ctx.dispute_policy,
                )
                uow.disputes.save(ticket)
                trade = get_trade(uow, trade_id)

        if escalated:
            logger.info(
                "Dispute escalated after round limit: ticket_id=%s messages=%d",
                ticket.id,
                len(ticket.mediation_log),
            )
        self._ctx.notifier.notify(
            NotificationType.DISPUTE_UPDATED,
            trade,
            now,
            ticket_id=ticket.id,
            dispute_status=ticket.status.value,
        )
        return ticket


class EscalateDisputeUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: EscalateDisputeCommand) -> DisputeTicket:
        trade_id = trade_id_of_ticket(self._ctx, command.ticket_id)
        now = self._ctx.clock.now()
        with self._ctx.locks.hold(trade_id):
            with self._ctx.uow_factory() as uow:
                ticket = get_ticket(uow, command.ticket_id)
                escalate(ticket, command.actor_id, now)
                uow.disputes.save(ticket)
                trade = get_trade(uow, trade_id)

        logger.info("Dispute escalated: ticket_id=%s by=%s", ticket.id, command.actor_id)
        self._ctx.notifier.notify(
            NotificationType.DISPUTE_UPDATED,
            trade,
            now,
            ticket_id=ticket.id,
            dispute_status=ticket.status.value,
        )
        return ticket
