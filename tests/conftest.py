"""
Shared fixtures for the barter test suite.

Use-case tests run against the in-memory adapters with a frozen clock,
the in-memory ledger and a notification hook that records every event.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest
from sqlalchemy import create_engine

from barterdesk.application.barter.confirm_satisfaction import ConfirmSatisfactionUseCase
from barterdesk.application.barter.context import BarterContext, TradePolicy
from barterdesk.application.barter.dtos import (
    ConfirmSatisfactionCommand,
    FundEscrowCommand,
    OpenDisputeCommand,
    ProposeTradeCommand,
    RegisterItemCommand,
    RegisterUserCommand,
    RespondToTradeCommand,
    SubmitRatingCommand,
    SubmitTrackingCommand,
)
from barterdesk.application.barter.fund_escrow import FundEscrowUseCase
from barterdesk.application.barter.get_trade import GetTradeUseCase
from barterdesk.application.barter.get_user_standing import GetUserStandingUseCase
from barterdesk.application.barter.notifications import Notifier
from barterdesk.application.barter.open_dispute import OpenDisputeUseCase
from barterdesk.application.barter.propose_trade import ProposeTradeUseCase
from barterdesk.application.barter.register_catalog import (
    RegisterItemUseCase,
    RegisterUserUseCase,
)
from barterdesk.application.barter.respond_to_trade import RespondToTradeUseCase
from barterdesk.application.barter.submit_rating import SubmitRatingUseCase
from barterdesk.application.barter.submit_tracking import SubmitTrackingUseCase
from barterdesk.domain.barter.entities import (
    DisputeType,
    SubscriptionTier,
    Trade,
    TradeAction,
    TradeEvent,
    ValuationSource,
)
from barterdesk.domain.barter.ports import BarterUnitOfWork, Clock, NotificationHook
from barterdesk.infrastructure.barter.in_memory_store import InMemoryBarterStore
from barterdesk.infrastructure.barter.ledger_gateway import InMemoryLedgerGateway
from barterdesk.infrastructure.barter.sql_store import SqlUnitOfWork, create_schema
from barterdesk.infrastructure.barter.valuation_provider import CatalogValuationProvider

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock(Clock):
    def __init__(self, now: datetime = START) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        self._now += delta
        return self._now


class RecordingNotificationHook(NotificationHook):
    def __init__(self) -> None:
        self.events: list[TradeEvent] = []

    def emit(self, event: TradeEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


class Marketplace:
    """Drives use cases against one in-memory context."""

    def __init__(self, context: BarterContext, ledger: InMemoryLedgerGateway,
                 hook: RecordingNotificationHook, clock: FrozenClock,
                 store: InMemoryBarterStore) -> None:
        self.ctx = context
        self.ledger = ledger
        self.hook = hook
        self.clock = clock
        self.store = store

    # Catalog

    def user(self, name: str, balance: int = 0, **kwargs) -> str:
        user = RegisterUserUseCase(self.ctx).execute(
            RegisterUserCommand(display_name=name, opening_balance=balance, user_id=name, **kwargs)
        )
        return user.id

    def item(self, owner_id: str, item_id: str, value: int,
             source: ValuationSource = ValuationSource.USER_DEFINED_GENERIC) -> str:
        item = RegisterItemUseCase(self.ctx).execute(
            RegisterItemCommand(
                owner_id=owner_id,
                name=item_id,
                estimated_market_value=value,
                valuation_source=source,
                item_id=item_id,
            )
        )
        return item.id

    # Lifecycle

    def propose(self, proposer: str, receiver: str, give=(), want=(),
                proposer_cash: int = 0, receiver_cash: int = 0) -> Trade:
        return ProposeTradeUseCase(self.ctx).execute(
            ProposeTradeCommand(
                proposer_id=proposer,
                receiver_id=receiver,
                proposer_item_ids=tuple(give),
                receiver_item_ids=tuple(want),
                proposer_cash=proposer_cash,
                receiver_cash=receiver_cash,
            )
        )

    def accept(self, trade: Trade) -> Trade:
        return RespondToTradeUseCase(self.ctx).execute(
            RespondToTradeCommand(
                trade_id=trade.id, actor_id=trade.receiver_id, action=TradeAction.ACCEPT
            )
        )

    def fund(self, trade: Trade, actor_id: Optional[str] = None) -> Trade:
        return FundEscrowUseCase(self.ctx).execute(
            FundEscrowCommand(trade_id=trade.id, actor_id=actor_id)
        )

    def track(self, trade: Trade, actor_id: str, number: str = "TRK-1") -> Trade:
        return SubmitTrackingUseCase(self.ctx).execute(
            SubmitTrackingCommand(trade_id=trade.id, actor_id=actor_id, tracking_number=number)
        )

    def ship_all(self, trade: Trade) -> Trade:
        if trade.proposer_item_ids:
            trade = self.track(trade, trade.proposer_id, "TRK-P")
        if trade.receiver_item_ids:
            trade = self.track(trade, trade.receiver_id, "TRK-R")
        return trade

    def confirm(self, trade: Trade, actor_id: str) -> Trade:
        return ConfirmSatisfactionUseCase(self.ctx).execute(
            ConfirmSatisfactionCommand(trade_id=trade.id, actor_id=actor_id)
        )

    def confirm_all(self, trade: Trade) -> Trade:
        self.confirm(trade, trade.proposer_id)
        return self.confirm(trade, trade.receiver_id)

    def rate(self, trade: Trade, rater_id: str, score: int = 5, **kwargs):
        return SubmitRatingUseCase(self.ctx).execute(
            SubmitRatingCommand(trade_id=trade.id, rater_id=rater_id, overall_score=score, **kwargs)
        )

    def dispute(self, trade: Trade, initiator_id: str,
                dispute_type: DisputeType = DisputeType.INR, statement: str = "Never arrived"):
        return OpenDisputeUseCase(self.ctx).execute(
            OpenDisputeCommand(
                trade_id=trade.id,
                initiator_id=initiator_id,
                dispute_type=dispute_type,
                statement=statement,
            )
        )

    def complete(self, trade: Trade) -> Trade:
        """Take an accepted trade through shipping, satisfaction and ratings."""
        trade = self.ship_all(trade)
        trade = self.confirm_all(trade)
        self.rate(trade, trade.proposer_id)
        self.rate(trade, trade.receiver_id)
        return self.trade(trade.id)

    # Queries

    def trade(self, trade_id: str) -> Trade:
        return GetTradeUseCase(self.ctx).execute(trade_id)

    def standing(self, user_id: str):
        return GetUserStandingUseCase(self.ctx).execute(user_id)

    def balance(self, user_id: str) -> int:
        return self.standing(user_id).balance


def build_market(
    trade_policy: Optional[TradePolicy] = None,
    uow_factory: Optional[Callable[[], BarterUnitOfWork]] = None,
    **context_kwargs,
) -> Marketplace:
    store = InMemoryBarterStore()
    uow_factory = uow_factory or store.unit_of_work
    ledger = InMemoryLedgerGateway()
    hook = RecordingNotificationHook()
    clock = FrozenClock()
    counter = itertools.count(1)
    context = BarterContext(
        uow_factory=uow_factory,
        ledger=ledger,
        valuations=CatalogValuationProvider(uow_factory),
        clock=clock,
        notifier=Notifier(hook),
        trade_policy=trade_policy or TradePolicy(),
        id_factory=lambda: f"id-{next(counter)}",
        **context_kwargs,
    )
    return Marketplace(context, ledger, hook, clock, store)


@pytest.fixture
def market() -> Marketplace:
    return build_market()


@pytest.fixture
def pro_user_kwargs() -> dict:
    return {"subscription_tier": SubscriptionTier.PRO, "subscription_active": True}


@pytest.fixture
def sql_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'barter.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_market(sql_engine) -> Marketplace:
    return build_market(uow_factory=lambda: SqlUnitOfWork(sql_engine))
