"""
Carries out settlement plans.

Two phases, always in this order:
    1. ``settle_on_ledger`` makes the external escrow calls, outside any
       unit of work, with idempotency keys derived from the trade id.
    2. ``complete`` / ``close_dispute`` apply ownership, cash and
       reputation effects inside a unit of work.

A failure in phase 1 leaves the trade untouched. A failure in phase 2
rolls back and a retry repeats phase 1 safely.
"""

import logging
from datetime import datetime
from typing import Optional

from barterdesk.application.barter.context import BarterContext, record
from barterdesk.domain.barter.entities import (
    AccountEventKind,
    DisputeTicket,
    Party,
    Trade,
    TradeStatus,
    TradeUpheld,
)
from barterdesk.domain.barter.ports import BarterUnitOfWork
from barterdesk.domain.barter.reputation_engine import PartyScore
from barterdesk.domain.barter.settlement import SettlementPlan, plan_settlement
from barterdesk.domain.barter.trade_machine import transition

logger = logging.getLogger(__name__)


def release_key(trade_id: str) -> str:
    return f"escrow-release:{trade_id}"


def refund_key(trade_id: str) -> str:
    return f"escrow-refund:{trade_id}"


class SettlementRunner:
    """Executes SettlementPlans against the ledger and the store."""

    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def settle_on_ledger(self, trade: Trade, plan: SettlementPlan) -> None:
        """Move escrowed money on the external ledger.

        Refund is issued before release so that a partial refund that
        fails halfway never pays the recipient first.

        Raises:
            LedgerUnavailableError: On timeout or connection failure.
            LedgerDeclinedError: If the ledger refuses the call.
        """
        if not trade.escrow_hold_id:
            return
        if plan.refund_cents > 0:
            self._ctx.ledger.refund_funds(
                trade.escrow_hold_id, plan.refund_cents, refund_key(trade.id)
            )
            logger.info(
                "Escrow refunded: trade_id=%s amount=%d", trade.id, plan.refund_cents
            )
        if plan.release_cents > 0:
            self._ctx.ledger.release_funds(
                trade.escrow_hold_id, plan.release_cents, release_key(trade.id)
            )
            logger.info(
                "Escrow released: trade_id=%s amount=%d", trade.id, plan.release_cents
            )

    def apply(
        self, uow: BarterUnitOfWork, trade: Trade, plan: SettlementPlan, now: datetime
    ) -> None:
        """Apply item, committed cash and escrow effects to the store."""
        for party in (Party.PROPOSER, Party.RECEIVER):
            giver = trade.user_of(party)
            taker = trade.counterparty_of(giver)

            item_ids = trade.items_of(party)
            if plan.transfer_items:
                for item_id in item_ids:
                    uow.items.transfer(item_id, taker, trade.id)
            else:
                uow.items.release(item_ids, trade.id)

            cash = trade.cash_of(party)
            if cash > 0:
                if plan.deliver_cash:
                    record(
                        uow,
                        f"{trade.id}:cash-delivery:{party.value}",
                        taker,
                        AccountEventKind.BALANCE,
                        cash,
                        "Trade cash received",
                        now,
                        trade_id=trade.id,
                    )
                else:
                    record(
                        uow,
                        f"{trade.id}:cash-return:{party.value}",
                        giver,
                        AccountEventKind.BALANCE,
                        cash,
                        "Committed trade cash returned",
                        now,
                        trade_id=trade.id,
                    )

        if plan.release_cents > 0 and trade.escrow_recipient_id:
            record(
                uow,
                f"{trade.id}:escrow-release",
                trade.escrow_recipient_id,
                AccountEventKind.BALANCE,
                plan.release_cents,
                "Escrow released",
                now,
                trade_id=trade.id,
            )
        if plan.refund_cents > 0 and trade.escrow_payer_id:
            record(
                uow,
                f"{trade.id}:escrow-refund",
                trade.escrow_payer_id,
                AccountEventKind.BALANCE,
                plan.refund_cents,
                "Escrow refunded",
                now,
                trade_id=trade.id,
            )

    def complete(
        self,
        uow: BarterUnitOfWork,
        trade: Trade,
        now: datetime,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> list[PartyScore]:
        """Move a trade to COMPLETED, settle it and score both parties."""
        transition(trade, TradeStatus.COMPLETED, actor_id, now, reason)
        self.apply(uow, trade, plan_settlement(trade, TradeUpheld()), now)

        scores = self._ctx.reputation.score_trade(
            trade, trade.valuation_snapshot, trade.valuation_sources
        )
        for score in scores:
            record(
                uow,
                f"{trade.id}:{score.user_id}:reputation",
                score.user_id,
                AccountEventKind.REPUTATION,
                score.reputation_delta,
                f"Valuation {score.outcome.value} (ratio {score.ratio:.4f})",
                now,
                trade_id=trade.id,
            )
            record(
                uow,
                f"{trade.id}:{score.user_id}:surplus",
                score.user_id,
                AccountEventKind.SURPLUS,
                score.surplus_delta,
                "Trade surplus",
                now,
                trade_id=trade.id,
            )
            logger.info(
                "Reputation scored: trade_id=%s user_id=%s outcome=%s delta=%d surplus=%d",
                trade.id,
                score.user_id,
                score.outcome.value,
                score.reputation_delta,
                score.surplus_delta,
            )

        for rating in uow.ratings.list_for_trade(trade.id):
            if not rating.is_revealed:
                rating.is_revealed = True
                uow.ratings.save(rating)

        uow.trades.save(trade)
        logger.info("Trade completed: trade_id=%s", trade.id)
        return scores

    def close_dispute(
        self,
        uow: BarterUnitOfWork,
        trade: Trade,
        ticket: DisputeTicket,
        now: datetime,
    ) -> None:
        """Move the disputed trade to DISPUTE_RESOLVED and apply the ruling."""
        plan = plan_settlement(trade, ticket.resolution)
        transition(
            trade,
            TradeStatus.DISPUTE_RESOLVED,
            ticket.resolved_by,
            now,
            ticket.resolution.kind.value,
        )
        self.apply(uow, trade, plan, now)
        uow.trades.save(trade)
        uow.disputes.save(ticket)
        logger.info(
            "Dispute closed: ticket_id=%s trade_id=%s resolution=%s refund=%d release=%d",
            ticket.id,
            trade.id,
            ticket.resolution.kind.value,
            plan.refund_cents,
            plan.release_cents,
        )
