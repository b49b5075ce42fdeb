"""
Use cases: Fund a trade's escrow and query its escrow position.

Input: FundEscrowCommand
Output: Trade (SHIPPING_PENDING or IN_TRANSIT once funded)
Side effects: Reserves the differential against the payer's balance, places
    a hold on the external ledger, advances the trade through ESCROW_FUNDED.
    A failed hold credits the reservation back.
Failure cases: TradeNotFoundError, TradeTerminalError, InvalidTransitionError,
    EscrowNotRequiredError, ActorNotPermittedError, InsufficientBalanceError,
    LedgerUnavailableError, LedgerDeclinedError.

Idempotent per trade: the hold carries a key derived from the trade id and
a trade that already holds escrow is returned unchanged.
"""

import logging

from barterdesk.application.barter.context import (
    BarterContext,
    get_trade,
    record,
    require_balance,
)
from barterdesk.application.barter.dtos import EscrowStatusResult, FundEscrowCommand
from barterdesk.domain.barter.entities import (
    AccountEventKind,
    NotificationType,
    Trade,
    TradeStatus,
)
from barterdesk.domain.barter.errors import (
    ActorNotPermittedError,
    EscrowNotRequiredError,
    ExternalDependencyError,
)
from barterdesk.domain.barter.ports import BarterUnitOfWork
from barterdesk.domain.barter.trade_machine import (
    enter_shipping,
    ensure_mutable,
    require_status,
    transition,
)

logger = logging.getLogger(__name__)


def hold_key(trade_id: str) -> str:
    return f"escrow-hold:{trade_id}"


def reserve_escrow(
    context: BarterContext, uow: BarterUnitOfWork, trade: Trade, now
) -> str:
    """Debit the payer for the escrow amount before the ledger is called.

    The balance check and the debit share one unit of work, so funds
    reserved here cannot be spent by another trade while the hold is in
    flight. A reservation left behind by an interrupted attempt is reused.
    """
    if trade.escrow_reservation_key:
        return trade.escrow_reservation_key
    require_balance(uow, trade.escrow_payer_id, trade.escrow_amount_cents)
    key = f"{trade.id}:escrow-hold:{context.new_id()}"
    record(
        uow,
        key,
        trade.escrow_payer_id,
        AccountEventKind.BALANCE,
        -trade.escrow_amount_cents,
        "Escrow hold",
        now,
        trade_id=trade.id,
    )
    trade.escrow_reservation_key = key
    uow.trades.save(trade)
    return key


def return_reservation(uow: BarterUnitOfWork, trade: Trade, now) -> None:
    """Credit back a reservation that never became a ledger hold."""
    key = trade.escrow_reservation_key
    if not key or trade.escrow_hold_id:
        return
    record(
        uow,
        f"{key}:returned",
        trade.escrow_payer_id,
        AccountEventKind.BALANCE,
        trade.escrow_amount_cents,
        "Escrow reservation returned",
        now,
        trade_id=trade.id,
    )
    trade.escrow_reservation_key = None


class FundEscrowUseCase:
    """Moves a PAYMENT_PENDING trade forward once its differential is held."""

    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: FundEscrowCommand) -> Trade:
        """Run the fund escrow use case.

        Ledger failures leave the trade in PAYMENT_PENDING with the payer's
        reservation returned; the caller decides whether and how often to
        retry.
        """
        with self._ctx.locks.hold(command.trade_id):
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, command.trade_id)
                ensure_mutable(trade)
                if trade.escrow_hold_id:
                    logger.info("Escrow already funded: trade_id=%s", trade.id)
                    return trade
                self._check_fundable(trade, command)
                reserve_escrow(self._ctx, uow, trade, self._ctx.clock.now())

            try:
                hold = self._ctx.ledger.hold_funds(
                    trade.id,
                    trade.escrow_payer_id,
                    trade.escrow_recipient_id,
                    trade.escrow_amount_cents,
                    hold_key(trade.id),
                )
            except ExternalDependencyError as exc:
                logger.error(
                    "Escrow hold failed: trade_id=%s code=%s error=%s",
                    trade.id,
                    exc.code,
                    exc,
                )
                with self._ctx.uow_factory() as uow:
                    trade = get_trade(uow, command.trade_id)
                    return_reservation(uow, trade, self._ctx.clock.now())
                    uow.trades.save(trade)
                raise

            now = self._ctx.clock.now()
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, command.trade_id)
                if trade.escrow_hold_id:
                    return trade
                require_status(trade, TradeStatus.PAYMENT_PENDING, "fund escrow for")
                trade.escrow_hold_id = hold.hold_id
                transition(trade, TradeStatus.ESCROW_FUNDED, command.actor_id, now)
                enter_shipping(
                    trade, command.actor_id, now, self._ctx.trade_policy.delivery_window
                )
                uow.trades.save(trade)

        logger.info(
            "Escrow funded: trade_id=%s hold_id=%s amount=%d status=%s",
            trade.id,
            hold.hold_id,
            trade.escrow_amount_cents,
            trade.status.value,
        )
        self._ctx.notifier.notify(
            NotificationType.ESCROW_FUNDED, trade, now, amount_cents=trade.escrow_amount_cents
        )
        return trade

    @staticmethod
    def _check_fundable(trade: Trade, command: FundEscrowCommand) -> None:
        if trade.status is not TradeStatus.PAYMENT_PENDING:
            if trade.escrow_amount_cents == 0 and trade.status is not TradeStatus.PENDING_ACCEPTANCE:
                raise EscrowNotRequiredError(trade.id)
            require_status(trade, TradeStatus.PAYMENT_PENDING, "fund escrow for")
        if command.actor_id is not None and command.actor_id != trade.escrow_payer_id:
            raise ActorNotPermittedError(command.actor_id, f"fund escrow for trade {trade.id}")


class GetEscrowStatusUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, trade_id: str) -> EscrowStatusResult:
        with self._ctx.uow_factory() as uow:
            trade = get_trade(uow, trade_id)

        hold = None
        if trade.escrow_hold_id:
            hold = self._ctx.ledger.get_hold_for_trade(trade.id)
        return EscrowStatusResult(
            trade_id=trade.id,
            required=trade.escrow_amount_cents > 0,
            amount_cents=trade.escrow_amount_cents,
            payer_id=trade.escrow_payer_id,
            recipient_id=trade.escrow_recipient_id,
            hold=hold,
        )
