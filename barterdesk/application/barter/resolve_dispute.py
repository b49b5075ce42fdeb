"""
Use case: Moderator resolves a dispute.

Input: ResolveDisputeCommand
Output: DisputeTicket (RESOLVED)
Side effects: Executes the ledger effects of the resolution (refund and/or
    release of the escrow hold), applies item and cash effects, moves the
    trade to DISPUTE_RESOLVED.
Failure cases: DisputeNotFoundError, UserNotFoundError, ActorNotPermittedError,
    DisputeClosedError, InvalidResolutionError, LedgerUnavailableError,
    LedgerDeclinedError.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from barterdesk.application.barter.context import (
    BarterContext,
    get_ticket,
    get_trade,
    get_user,
    trade_id_of_ticket,
)
from barterdesk.application.barter.dtos import ResolveDisputeCommand
from barterdesk.application.barter.settlement_runner import SettlementRunner
from barterdesk.domain.barter.dispute_machine import resolve
from barterdesk.domain.barter.entities import (
    DisputeTicket,
    NotificationType,
    Trade,
    TradeStatus,
)
from barterdesk.domain.barter.errors import InvalidTransitionError
from barterdesk.domain.barter.ports import BarterUnitOfWork
from barterdesk.domain.barter.settlement import plan_settlement

logger = logging.getLogger(__name__)

Decision = Callable[[BarterUnitOfWork, DisputeTicket, datetime], bool]


def settle_dispute(
    context: BarterContext,
    runner: SettlementRunner,
    ticket_id: str,
    decide: Decision,
    now: datetime,
) -> Optional[tuple[DisputeTicket, Trade]]:
    """Decide a ticket and carry out its resolution.

    ``decide`` sets the ticket's resolution and returns True, or returns
    False when there is nothing to do. It runs once to validate before any
    ledger call and again inside the writing unit of work.

    Returns:
        The closed ticket and trade, or None if ``decide`` declined.
    """
    trade_id = trade_id_of_ticket(context, ticket_id)
    with context.locks.hold(trade_id):
        with context.uow_factory() as uow:
            ticket = get_ticket(uow, ticket_id)
            trade = get_trade(uow, trade_id)
            if not decide(uow, ticket, now):
                return None
            if trade.status is not TradeStatus.DISPUTE_OPENED:
                raise InvalidTransitionError(
                    trade.id, trade.status.value, "settle a dispute on"
                )

        runner.settle_on_ledger(trade, plan_settlement(trade, ticket.resolution))

        with context.uow_factory() as uow:
            ticket = get_ticket(uow, ticket_id)
            trade = get_trade(uow, trade_id)
            if not decide(uow, ticket, now):
                return None
            runner.close_dispute(uow, trade, ticket, now)
    return ticket, trade


class ResolveDisputeUseCase:
    """Applies a moderator's ruling to a dispute and its trade."""

    def __init__(self, context: BarterContext) -> None:
        self._ctx = context
        self._runner = SettlementRunner(context)

    def execute(self, command: ResolveDisputeCommand) -> DisputeTicket:
        """Run the resolve dispute use case.

        Args:
            command: Ticket, moderator and the chosen resolution variant.

        Returns:
            The resolved ticket.
        """

        def decide(uow: BarterUnitOfWork, ticket: DisputeTicket, now: datetime) -> bool:
            moderator = get_user(uow, command.moderator_id)
            resolve(ticket, moderator, command.resolution, now, command.notes)
            return True

        now = self._ctx.clock.now()
        ticket, trade = settle_dispute(
            self._ctx, self._runner, command.ticket_id, decide, now
        )
        logger.info(
            "Dispute resolved: ticket_id=%s resolution=%s moderator=%s",
            ticket.id,
            ticket.resolution.kind.value,
            command.moderator_id,
        )
        self._ctx.notifier.notify(
            NotificationType.DISPUTE_RESOLVED,
            trade,
            now,
            ticket_id=ticket.id,
            resolution=ticket.resolution.kind.value,
        )
        return ticket
