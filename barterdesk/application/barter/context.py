"""
Shared collaborators and lookup helpers for barter use cases.

A BarterContext bundles the ports every use case needs so that the
composition root wires them once. The helpers below raise the specific
NotFound errors instead of letting None leak into business logic.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from barterdesk.application.barter.locking import TradeLockRegistry
from barterdesk.application.barter.notifications import Notifier
from barterdesk.domain.barter.dispute_machine import DisputePolicy
from barterdesk.domain.barter.entities import (
    AccountEvent,
    AccountEventKind,
    DisputeTicket,
    Item,
    Trade,
    User,
)
from barterdesk.domain.barter.errors import (
    DisputeNotFoundError,
    InsufficientBalanceError,
    ItemNotFoundError,
    TradeNotFoundError,
    UserNotFoundError,
)
from barterdesk.domain.barter.fees import FeePolicy
from barterdesk.domain.barter.ports import (
    BarterUnitOfWork,
    Clock,
    LedgerGateway,
    SystemClock,
    ValuationProvider,
)
from barterdesk.domain.barter.reputation_engine import ReputationEngine
from barterdesk.domain.barter.trade_machine import EscrowPayerRule


def _new_id() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class TradePolicy:
    """Lifecycle timing and settlement rules.

    Attributes:
        delivery_window: Time after IN_TRANSIT before delivery is
            assumed confirmed.
        rating_window: Time after COMPLETED_AWAITING_RATING before the
            trade completes without the missing ratings.
        escrow_payer_rule: Which side funds a non-zero differential.
        initial_reputation_score: Score every user starts with.
    """

    delivery_window: timedelta = timedelta(days=14)
    rating_window: timedelta = timedelta(days=7)
    escrow_payer_rule: EscrowPayerRule = EscrowPayerRule.SURPLUS_SIDE
    initial_reputation_score: int = 100


@dataclass
class BarterContext:
    """Everything a barter use case depends on."""

    uow_factory: Callable[[], BarterUnitOfWork]
    ledger: LedgerGateway
    valuations: ValuationProvider
    clock: Clock = field(default_factory=SystemClock)
    locks: TradeLockRegistry = field(default_factory=TradeLockRegistry)
    notifier: Notifier = field(default_factory=Notifier)
    trade_policy: TradePolicy = field(default_factory=TradePolicy)
    dispute_policy: DisputePolicy = field(default_factory=DisputePolicy)
    reputation: ReputationEngine = field(default_factory=ReputationEngine)
    fees: FeePolicy = field(default_factory=FeePolicy)
    id_factory: Callable[[], str] = _new_id

    def new_id(self) -> str:
        return self.id_factory()


# ──────────────────────────────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────────────────────────────


def get_user(uow: BarterUnitOfWork, user_id: str) -> User:
    user = uow.users.get(user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def get_item(uow: BarterUnitOfWork, item_id: str) -> Item:
    item = uow.items.get(item_id)
    if item is None:
        raise ItemNotFoundError(item_id)
    return item


def get_trade(uow: BarterUnitOfWork, trade_id: str) -> Trade:
    trade = uow.trades.get(trade_id)
    if trade is None:
        raise TradeNotFoundError(trade_id)
    return trade


def get_ticket(uow: BarterUnitOfWork, ticket_id: str) -> DisputeTicket:
    ticket = uow.disputes.get(ticket_id)
    if ticket is None:
        raise DisputeNotFoundError(ticket_id)
    return ticket


def trade_id_of_ticket(context: BarterContext, ticket_id: str) -> str:
    """Resolve the trade a ticket belongs to, so its trade lock can be taken."""
    with context.uow_factory() as uow:
        return get_ticket(uow, ticket_id).trade_id


# ──────────────────────────────────────────────────────────────────────
# Account ledger
# ──────────────────────────────────────────────────────────────────────


def balance_of(uow: BarterUnitOfWork, user_id: str) -> int:
    return uow.accounts.total(user_id, AccountEventKind.BALANCE)


def require_balance(uow: BarterUnitOfWork, user_id: str, required: int) -> None:
    """Raise InsufficientBalanceError if the user cannot cover ``required``."""
    if required <= 0:
        return
    uow.users.lock_for_update(user_id)
    available = balance_of(uow, user_id)
    if required > available:
        raise InsufficientBalanceError(user_id, required, available)


def record(
    uow: BarterUnitOfWork,
    event_key: str,
    user_id: str,
    kind: AccountEventKind,
    delta: int,
    reason: str,
    now: datetime,
    trade_id: Optional[str] = None,
) -> bool:
    """Append one account event. Returns False if the key was already used."""
    return uow.accounts.append(
        AccountEvent(
            event_key=event_key,
            user_id=user_id,
            kind=kind,
            delta=delta,
            reason=reason,
            trade_id=trade_id,
            recorded_at=now,
        )
    )
