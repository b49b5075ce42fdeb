"""
Use case: Respond to a pending trade proposal.

Input: RespondToTradeCommand (accept | reject | counter)
Output: Trade. For counter, the NEW linked trade.
Side effects:
    accept  - snapshots valuations, reserves every item (compare-and-swap),
              commits declared cash, fixes the platform fee against the
              proposer's current billing cycle, fixes the escrow differential and
              cancels every other pending trade that references a reserved
              item with ITEM_NO_LONGER_AVAILABLE.
    reject  - marks the trade REJECTED.
    counter - creates a new trade linked by parent_trade_id and marks the
              original COUNTERED.
Failure cases: TradeNotFoundError, TradeTerminalError, InvalidTransitionError,
    ActorNotPermittedError, ItemNoLongerAvailableError, InsufficientBalanceError,
    ValuationUnavailableError, MissingFieldError.
"""

import logging
from datetime import datetime

from barterdesk.application.barter.context import (
    BarterContext,
    get_trade,
    get_user,
    record,
    require_balance,
)
from barterdesk.application.barter.dtos import RespondToTradeCommand
from barterdesk.application.barter.propose_trade import build_trade, check_offer
from barterdesk.domain.barter.entities import (
    AccountEventKind,
    CancellationReason,
    NotificationType,
    Party,
    Trade,
    TradeAction,
    TradeStatus,
    Valuation,
)
from barterdesk.domain.barter.errors import (
    ActorNotPermittedError,
    ItemNoLongerAvailableError,
    MissingFieldError,
)
from barterdesk.domain.barter.ports import BarterUnitOfWork
from barterdesk.domain.barter.trade_machine import (
    compute_cash_differential,
    enter_shipping,
    require_status,
    transition,
)

logger = logging.getLogger(__name__)


class RespondToTradeUseCase:
    """Applies the receiver's accept, reject or counter decision."""

    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: RespondToTradeCommand) -> Trade:
        """Run the respond to trade use case.

        Args:
            command: The receiver's decision.

        Returns:
            The updated trade, or the new counter-trade for a counter.
        """
        with self._ctx.locks.hold(command.trade_id):
            if command.action is TradeAction.ACCEPT:
                return self._accept(command)
            if command.action is TradeAction.REJECT:
                return self._reject(command)
            return self._counter(command)

    def _load_pending(self, uow: BarterUnitOfWork, command: RespondToTradeCommand) -> Trade:
        trade = get_trade(uow, command.trade_id)
        require_status(trade, TradeStatus.PENDING_ACCEPTANCE, command.action.value)
        if command.actor_id != trade.receiver_id:
            raise ActorNotPermittedError(
                command.actor_id, f"{command.action.value} trade {trade.id}"
            )
        return trade

    # ──────────────────────────────────────────────────────────────────
    # Accept
    # ──────────────────────────────────────────────────────────────────

    def _accept(self, command: RespondToTradeCommand) -> Trade:
        with self._ctx.uow_factory() as uow:
            trade = self._load_pending(uow, command)

        valuations = self._snapshot_valuations(trade)
        now = self._ctx.clock.now()

        try:
            with self._ctx.uow_factory() as uow:
                trade = self._load_pending(uow, command)
                invalidated = self._accept_in(uow, trade, command.actor_id, valuations, now)
        except ItemNoLongerAvailableError as exc:
            logger.warning(
                "Acceptance refused: trade_id=%s item_id=%s", command.trade_id, exc.item_id
            )
            raise

        logger.info(
            "Trade accepted: trade_id=%s status=%s escrow=%d payer=%s",
            trade.id,
            trade.status.value,
            trade.escrow_amount_cents,
            trade.escrow_payer_id,
        )
        self._ctx.notifier.notify(NotificationType.TRADE_ACCEPTED, trade, now)
        for other in invalidated:
            self._ctx.notifier.notify(
                NotificationType.TRADE_CANCELLED,
                other,
                now,
                reason=CancellationReason.ITEM_NO_LONGER_AVAILABLE.value,
                item_id=other.unavailable_item_id,
                accepted_trade_id=trade.id,
            )
        return trade

    def _snapshot_valuations(self, trade: Trade) -> dict[str, Valuation]:
        return {
            item_id: self._ctx.valuations.get_emv(item_id)
            for item_id in trade.all_item_ids
        }

    def _accept_in(
        self,
        uow: BarterUnitOfWork,
        trade: Trade,
        actor_id: str,
        valuations: dict[str, Valuation],
        now: datetime,
    ) -> list[Trade]:
        trade.valuation_snapshot = {i: v.value_cents for i, v in valuations.items()}
        trade.valuation_sources = {i: v.source for i, v in valuations.items()}
        differential = compute_cash_differential(
            trade, trade.valuation_snapshot, self._ctx.trade_policy.escrow_payer_rule
        )

        for party in (Party.PROPOSER, Party.RECEIVER):
            user_id = trade.user_of(party)
            required = trade.cash_of(party)
            if differential.payer_id == user_id:
                required += differential.amount_cents
            require_balance(uow, user_id, required)

        expected_owners = {item_id: trade.proposer_id for item_id in trade.proposer_item_ids}
        expected_owners.update({item_id: trade.receiver_id for item_id in trade.receiver_item_ids})
        if expected_owners:
            uow.items.reserve(expected_owners, trade.id)

        transition(trade, TradeStatus.ACCEPTED, actor_id, now)

        for party in (Party.PROPOSER, Party.RECEIVER):
            cash = trade.cash_of(party)
            if cash > 0:
                record(
                    uow,
                    f"{trade.id}:cash-commit:{party.value}",
                    trade.user_of(party),
                    AccountEventKind.BALANCE,
                    -cash,
                    "Trade cash committed",
                    now,
                    trade_id=trade.id,
                )

        self._settle_fee(uow, trade, now)

        trade.escrow_amount_cents = differential.amount_cents
        trade.escrow_payer_id = differential.payer_id
        trade.escrow_recipient_id = differential.recipient_id
        if differential.requires_escrow:
            transition(trade, TradeStatus.PAYMENT_PENDING, actor_id, now, "escrow required")
        else:
            enter_shipping(trade, actor_id, now, self._ctx.trade_policy.delivery_window)

        invalidated = self._invalidate_competing(uow, trade, now)
        uow.trades.save(trade)
        return invalidated

    def _settle_fee(self, uow: BarterUnitOfWork, trade: Trade, now: datetime) -> None:
        """Fix the fee at acceptance. The proposal-time quote is only an estimate."""
        fees = self._ctx.fees
        payer = get_user(uow, trade.fee_payer_id or trade.proposer_id)
        quote = fees.quote(payer, now)
        trade.platform_fee_cents = quote.fee_cents
        trade.is_fee_waived = quote.is_waived
        trade.fee_payer_id = quote.payer_id
        if quote.is_waived:
            fees.count_waived_trade(payer, now)
            uow.users.save(payer)

    def _invalidate_competing(
        self, uow: BarterUnitOfWork, accepted: Trade, now: datetime
    ) -> list[Trade]:
        reserved = set(accepted.all_item_ids)
        if not reserved:
            return []

        invalidated = []
        for other in uow.trades.list_pending_referencing(reserved):
            if other.id == accepted.id:
                continue
            conflict = sorted(reserved & set(other.all_item_ids))[0]
            transition(
                other,
                TradeStatus.CANCELLED,
                None,
                now,
                f"item {conflict} committed to trade {accepted.id}",
            )
            other.cancellation_reason = CancellationReason.ITEM_NO_LONGER_AVAILABLE
            other.unavailable_item_id = conflict
            uow.trades.save(other)
            invalidated.append(other)
            logger.info(
                "Trade invalidated: trade_id=%s item_id=%s accepted_trade_id=%s",
                other.id,
                conflict,
                accepted.id,
            )
        return invalidated

    # ──────────────────────────────────────────────────────────────────
    # Reject / counter
    # ──────────────────────────────────────────────────────────────────

    def _reject(self, command: RespondToTradeCommand) -> Trade:
        now = self._ctx.clock.now()
        with self._ctx.uow_factory() as uow:
            trade = self._load_pending(uow, command)
            transition(trade, TradeStatus.REJECTED, command.actor_id, now)
            uow.trades.save(trade)

        logger.info("Trade rejected: trade_id=%s", trade.id)
        self._ctx.notifier.notify(
            NotificationType.TRADE_REJECTED, trade, now, recipients=[trade.proposer_id]
        )
        return trade

    def _counter(self, command: RespondToTradeCommand) -> Trade:
        if command.counter_terms is None:
            raise MissingFieldError("counter_terms")

        now = self._ctx.clock.now()
        with self._ctx.uow_factory() as uow:
            original = self._load_pending(uow, command)
            check_offer(uow, command.actor_id, original.proposer_id, command.counter_terms)
            counter = build_trade(
                self._ctx,
                uow,
                command.actor_id,
                original.proposer_id,
                command.counter_terms,
                now,
                parent_trade_id=original.id,
                counter_message=command.counter_message,
            )
            transition(
                original,
                TradeStatus.COUNTERED,
                command.actor_id,
                now,
                f"countered by {counter.id}",
            )
            uow.trades.save(original)
            uow.trades.save(counter)

        logger.info("Trade countered: trade_id=%s counter_trade_id=%s", original.id, counter.id)
        self._ctx.notifier.notify(
            NotificationType.COUNTER_OFFER,
            counter,
            now,
            recipients=[counter.receiver_id],
            parent_trade_id=original.id,
        )
        return counter
