"""
Use case: Cancel a trade.

Input: CancelTradeCommand
Output: Trade (CANCELLED)
Side effects: For an accepted trade still awaiting escrow, releases the
    item reservations and returns committed cash along with any escrow
    reservation left by an interrupted funding attempt.
Failure cases: TradeNotFoundError, TradeTerminalError, ItemNoLongerAvailableError,
    ActorNotPermittedError, InvalidTransitionError.

Rules:
    PENDING_ACCEPTANCE - proposer only.
    PAYMENT_PENDING    - either party, before the escrow hold exists.
"""

import logging

from barterdesk.application.barter.context import BarterContext, get_trade
from barterdesk.application.barter.dtos import CancelTradeCommand
from barterdesk.application.barter.fund_escrow import return_reservation
from barterdesk.application.barter.settlement_runner import SettlementRunner
from barterdesk.domain.barter.entities import (
    CancellationReason,
    FullRefund,
    NotificationType,
    Trade,
    TradeStatus,
)
from barterdesk.domain.barter.errors import ActorNotPermittedError, InvalidTransitionError
from barterdesk.domain.barter.settlement import plan_settlement
from barterdesk.domain.barter.trade_machine import ensure_mutable, transition

logger = logging.getLogger(__name__)


class CancelTradeUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context
        self._runner = SettlementRunner(context)

    def execute(self, command: CancelTradeCommand) -> Trade:
        now = self._ctx.clock.now()
        with self._ctx.locks.hold(command.trade_id):
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, command.trade_id)
                ensure_mutable(trade)

                if trade.status is TradeStatus.PENDING_ACCEPTANCE:
                    if command.actor_id != trade.proposer_id:
                        raise ActorNotPermittedError(
                            command.actor_id, f"cancel trade {trade.id}"
                        )
                elif trade.status is TradeStatus.PAYMENT_PENDING:
                    if not trade.is_party(command.actor_id):
                        raise ActorNotPermittedError(
                            command.actor_id, f"cancel trade {trade.id}"
                        )
                    if trade.escrow_hold_id:
                        raise InvalidTransitionError(
                            trade.id, "escrow funded", "cancel"
                        )

                was_accepted = trade.status is TradeStatus.PAYMENT_PENDING
                transition(trade, TradeStatus.CANCELLED, command.actor_id, now, "cancelled by party")
                trade.cancellation_reason = CancellationReason.BY_PARTY
                if was_accepted:
                    self._runner.apply(uow, trade, plan_settlement(trade, FullRefund()), now)
                    return_reservation(uow, trade, now)
                uow.trades.save(trade)

        logger.info(
            "Trade cancelled: trade_id=%s actor=%s", trade.id, command.actor_id
        )
        self._ctx.notifier.notify(
            NotificationType.TRADE_CANCELLED,
            trade,
            now,
            recipients=[trade.counterparty_of(command.actor_id)],
            reason=CancellationReason.BY_PARTY.value,
        )
        return trade
