"""
Use case: Enforce lifecycle deadlines.

Input: optional reference time (defaults to the clock)
Output: SweepResult
Side effects:
    - IN_TRANSIT past the delivery deadline -> COMPLETED_AWAITING_RATING
    - COMPLETED_AWAITING_RATING past the rating deadline (or with both
      ratings already in) -> COMPLETED, fully settled and scored
    - OPEN_AWAITING_RESPONSE tickets past their deadline ->
      CLOSED_AUTOMATICALLY with the default resolution, trade ->
      DISPUTE_RESOLVED
    - IN_MEDIATION tickets past their deadline -> ESCALATED_TO_MODERATOR
Failure cases: None raised for individual trades; a domain failure on one
    trade is logged, reported in ``failed`` and retried on the next pass.

Run periodically by the scheduler and on demand through the API.
"""

import logging
from datetime import datetime
from typing import Optional

from barterdesk.application.barter.context import (
    BarterContext,
    get_ticket,
    get_trade,
    trade_id_of_ticket,
)
from barterdesk.application.barter.dtos import SweepResult
from barterdesk.application.barter.resolve_dispute import settle_dispute
from barterdesk.application.barter.settlement_runner import SettlementRunner
from barterdesk.domain.barter.dispute_machine import (
    close_automatically,
    escalate_overdue,
    is_mediation_overdue,
    is_response_overdue,
)
from barterdesk.domain.barter.entities import (
    DisputeStatus,
    DisputeTicket,
    NotificationType,
    Trade,
    TradeStatus,
    TradeUpheld,
)
from barterdesk.domain.barter.errors import BarterDomainError
from barterdesk.domain.barter.ports import BarterUnitOfWork
from barterdesk.domain.barter.settlement import plan_settlement
from barterdesk.domain.barter.trade_machine import ratings_complete, transition

logger = logging.getLogger(__name__)


def _delivery_due(trade: Trade, now: datetime) -> bool:
    return (
        trade.status is TradeStatus.IN_TRANSIT
        and trade.delivery_deadline is not None
        and trade.delivery_deadline <= now
    )


def _completion_due(trade: Trade, now: datetime) -> bool:
    if trade.status is not TradeStatus.COMPLETED_AWAITING_RATING:
        return False
    if ratings_complete(trade):
        return True
    return trade.rating_deadline is not None and trade.rating_deadline <= now


class SweepDeadlinesUseCase:
    """Advances every trade and dispute whose deadline has elapsed."""

    def __init__(self, context: BarterContext) -> None:
        self._ctx = context
        self._runner = SettlementRunner(context)

    def execute(self, now: Optional[datetime] = None) -> SweepResult:
        """Run one sweep.

        Args:
            now: Reference time. Defaults to the context clock.

        Returns:
            Ids of everything that moved, plus ids that failed.
        """
        now = now or self._ctx.clock.now()
        with self._ctx.uow_factory() as uow:
            in_transit = [
                t.id
                for t in uow.trades.list_by_status([TradeStatus.IN_TRANSIT])
                if _delivery_due(t, now)
            ]
            awaiting = [
                t.id
                for t in uow.trades.list_by_status([TradeStatus.COMPLETED_AWAITING_RATING])
                if _completion_due(t, now)
            ]
            overdue = [
                d.id
                for d in uow.disputes.list_by_status([DisputeStatus.OPEN_AWAITING_RESPONSE])
                if is_response_overdue(d, now)
            ]
            stalled = [
                d.id
                for d in uow.disputes.list_by_status([DisputeStatus.IN_MEDIATION])
                if is_mediation_overdue(d, now)
            ]

        result = SweepResult()
        for trade_id in in_transit:
            self._attempt(trade_id, self._confirm_delivery, now, result.delivery_confirmed, result)
        for trade_id in awaiting:
            self._attempt(trade_id, self._complete, now, result.completed, result)
        for ticket_id in overdue:
            self._attempt(ticket_id, self._close_dispute, now, result.disputes_closed, result)
        for ticket_id in stalled:
            self._attempt(ticket_id, self._escalate_dispute, now, result.disputes_escalated, result)

        logger.info(
            "Deadline sweep done: delivered=%d completed=%d disputes_closed=%d "
            "disputes_escalated=%d failed=%d",
            len(result.delivery_confirmed),
            len(result.completed),
            len(result.disputes_closed),
            len(result.disputes_escalated),
            len(result.failed),
        )
        return result

    @staticmethod
    def _attempt(entity_id, step, now, bucket: list[str], result: SweepResult) -> None:
        try:
            if step(entity_id, now):
                bucket.append(entity_id)
        except BarterDomainError as exc:
            logger.warning(
                "Deadline sweep step failed: id=%s code=%s error=%s",
                entity_id,
                exc.code,
                exc,
            )
            result.failed.append(entity_id)

    def _confirm_delivery(self, trade_id: str, now: datetime) -> bool:
        with self._ctx.locks.hold(trade_id):
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, trade_id)
                if not _delivery_due(trade, now):
                    return False
                transition(
                    trade,
                    TradeStatus.COMPLETED_AWAITING_RATING,
                    None,
                    now,
                    "delivery deadline elapsed",
                )
                trade.rating_deadline = now + self._ctx.trade_policy.rating_window
                uow.trades.save(trade)

        logger.info("Delivery auto-confirmed: trade_id=%s", trade_id)
        self._ctx.notifier.notify(NotificationType.ITEMS_VERIFIED, trade, now, automatic=True)
        return True

    def _complete(self, trade_id: str, now: datetime) -> bool:
        with self._ctx.locks.hold(trade_id):
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, trade_id)
                if not _completion_due(trade, now):
                    return False

            self._runner.settle_on_ledger(trade, plan_settlement(trade, TradeUpheld()))

            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, trade_id)
                if not _completion_due(trade, now):
                    return False
                reason = "both parties rated" if ratings_complete(trade) else "rating deadline elapsed"
                self._runner.complete(uow, trade, now, None, reason)

        self._ctx.notifier.notify(NotificationType.TRADE_COMPLETED, trade, now)
        return True

    def _close_dispute(self, ticket_id: str, now: datetime) -> bool:
        policy = self._ctx.dispute_policy

        def decide(uow: BarterUnitOfWork, ticket: DisputeTicket, at: datetime) -> bool:
            return close_automatically(ticket, at, policy)

        closed = settle_dispute(self._ctx, self._runner, ticket_id, decide, now)
        if closed is None:
            return False
        ticket, trade = closed
        logger.info(
            "Dispute closed automatically: ticket_id=%s resolution=%s",
            ticket.id,
            ticket.resolution.kind.value,
        )
        self._ctx.notifier.notify(
            NotificationType.DISPUTE_RESOLVED,
            trade,
            now,
            ticket_id=ticket.id,
            resolution=ticket.resolution.kind.value,
            automatic=True,
        )
        return True

    def _escalate_dispute(self, ticket_id: str, now: datetime) -> bool:
        trade_id = trade_id_of_ticket(self._ctx, ticket_id)
        with self._ctx.locks.hold(trade_id):
            with self._ctx.uow_factory() as uow:
                ticket = get_ticket(uow, ticket_id)
                if not escalate_overdue(ticket, now):
                    return False
                uow.disputes.save(ticket)
                trade = get_trade(uow, trade_id)

        logger.info("Dispute escalated after mediation deadline: ticket_id=%s", ticket_id)
        self._ctx.notifier.notify(
            NotificationType.DISPUTE_UPDATED,
            trade,
            now,
            ticket_id=ticket.id,
            dispute_status=ticket.status.value,
            automatic=True,
        )
        return True
