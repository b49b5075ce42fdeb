"""
Dependency injection for the barter bounded context.

build_barter_runtime() is the composition root: it turns Settings into a
BarterContext wired with the configured store, ledger and notification
hooks. The app factory stores the runtime on ``app.state``; the FastAPI
dependency functions below build use cases from it per request.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from barterdesk.application.barter.cancel_trade import CancelTradeUseCase
from barterdesk.application.barter.confirm_satisfaction import ConfirmSatisfactionUseCase
from barterdesk.application.barter.context import BarterContext, TradePolicy
from barterdesk.application.barter.fund_escrow import (
    FundEscrowUseCase,
    GetEscrowStatusUseCase,
)
from barterdesk.application.barter.get_trade import (
    GetDisputeUseCase,
    GetNegotiationHistoryUseCase,
    GetTradeUseCase,
    ListUserTradesUseCase,
)
from barterdesk.application.barter.get_user_standing import GetUserStandingUseCase
from barterdesk.application.barter.list_ratings import (
    ListTradeRatingsUseCase,
    ListUserRatingsUseCase,
)
from barterdesk.application.barter.mediate_dispute import (
    EscalateDisputeUseCase,
    PostMediationMessageUseCase,
)
from barterdesk.application.barter.notifications import Notifier
from barterdesk.application.barter.open_dispute import OpenDisputeUseCase
from barterdesk.application.barter.propose_trade import ProposeTradeUseCase
from barterdesk.application.barter.register_catalog import (
    RegisterItemUseCase,
    RegisterUserUseCase,
)
from barterdesk.application.barter.resolve_dispute import ResolveDisputeUseCase
from barterdesk.application.barter.respond_to_dispute import RespondToDisputeUseCase
from barterdesk.application.barter.respond_to_trade import RespondToTradeUseCase
from barterdesk.application.barter.submit_rating import SubmitRatingUseCase
from barterdesk.application.barter.submit_tracking import SubmitTrackingUseCase
from barterdesk.application.barter.sweep_deadlines import SweepDeadlinesUseCase
from barterdesk.core.config import Settings
from barterdesk.domain.barter.dispute_machine import DisputePolicy, build_resolution
from barterdesk.domain.barter.entities import ResolutionKind
from barterdesk.domain.barter.fees import FeePolicy
from barterdesk.domain.barter.ports import BarterUnitOfWork, LedgerGateway, NotificationHook
from barterdesk.domain.barter.reputation_engine import (
    GiveawayPolicy,
    ReputationEngine,
    ReputationPolicy,
)
from barterdesk.domain.barter.trade_machine import EscrowPayerRule
from barterdesk.infrastructure.barter.in_memory_store import InMemoryBarterStore
from barterdesk.infrastructure.barter.ledger_gateway import (
    HttpLedgerGateway,
    InMemoryLedgerGateway,
)
from barterdesk.infrastructure.barter.notification_hooks import (
    CompositeNotificationHook,
    LoggingNotificationHook,
    WebhookNotificationHook,
)
from barterdesk.infrastructure.barter.sql_store import SqlUnitOfWork, create_schema
from barterdesk.infrastructure.barter.valuation_provider import CatalogValuationProvider

logger = logging.getLogger(__name__)


@dataclass
class BarterRuntime:
    """A wired context plus the resources to release on shutdown."""

    context: BarterContext
    closers: list[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        for close in self.closers:
            close()


# ------------------------------------------------------------------
# Composition root
# ------------------------------------------------------------------


def _build_engine(database_url: str) -> Engine:
    """Build a SQLAlchemy engine. In-memory SQLite shares one connection."""
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)


def _build_uow_factory(settings: Settings, runtime_closers: list) -> Callable[[], BarterUnitOfWork]:
    if settings.database_url:
        engine = _build_engine(settings.database_url)
        create_schema(engine)
        runtime_closers.append(engine.dispose)
        logger.info("Barter store: SQL (%s)", engine.url.get_backend_name())
        return lambda: SqlUnitOfWork(engine)

    store = InMemoryBarterStore()
    logger.info("Barter store: in-memory")
    return store.unit_of_work


def _build_ledger(settings: Settings, runtime_closers: list) -> LedgerGateway:
    if settings.ledger_base_url:
        ledger = HttpLedgerGateway(
            base_url=settings.ledger_base_url,
            api_key=settings.ledger_api_key,
            timeout_seconds=settings.ledger_timeout_seconds,
        )
        runtime_closers.append(ledger.close)
        logger.info("Escrow ledger: %s", settings.ledger_base_url)
        return ledger
    logger.info("Escrow ledger: in-memory")
    return InMemoryLedgerGateway()


def _build_hook(settings: Settings, runtime_closers: list) -> NotificationHook:
    hooks: list[NotificationHook] = [LoggingNotificationHook()]
    if settings.notification_webhook_urls:
        webhook = WebhookNotificationHook(
            urls=settings.notification_webhook_urls,
            timeout_seconds=settings.notification_timeout_seconds,
        )
        runtime_closers.append(webhook.close)
        hooks.append(webhook)
    return CompositeNotificationHook(hooks)


def build_policies(settings: Settings) -> tuple[TradePolicy, DisputePolicy, ReputationEngine, FeePolicy]:
    """Translate the flat settings into the domain policy value objects."""
    trade_policy = TradePolicy(
        delivery_window=timedelta(days=settings.delivery_confirmation_days),
        rating_window=timedelta(days=settings.rating_window_days),
        escrow_payer_rule=EscrowPayerRule(settings.escrow_payer_rule),
        initial_reputation_score=settings.reputation_initial_score,
    )
    dispute_policy = DisputePolicy(
        response_window=timedelta(hours=settings.dispute_response_hours),
        mediation_window=timedelta(hours=settings.mediation_response_hours),
        round_limit=settings.mediation_round_limit,
        default_resolution=build_resolution(
            ResolutionKind(settings.dispute_default_resolution),
            settings.dispute_default_refund_ratio,
        ),
    )
    reputation = ReputationEngine(
        ReputationPolicy(
            balanced_tolerance=settings.reputation_balanced_tolerance,
            overvaluation_threshold=settings.reputation_overvaluation_threshold,
            balanced_reward=settings.reputation_balanced_reward,
            overvaluation_penalty=settings.reputation_overvaluation_penalty,
            giveaway_policy=GiveawayPolicy(settings.reputation_giveaway_policy),
            exempt_api_verified=settings.reputation_exempt_api_verified,
        )
    )
    fees = FeePolicy(
        flat_fee_cents=settings.flat_escrow_fee_cents,
        pro_free_trades_limit=settings.pro_free_trades_limit,
        cycle_length=timedelta(days=settings.fee_cycle_days),
    )
    return trade_policy, dispute_policy, reputation, fees


def build_barter_runtime(settings: Settings) -> BarterRuntime:
    """Wire a BarterContext from settings.

    Args:
        settings: Application settings.

    Returns:
        The runtime holding the context and its shutdown hooks.
    """
    closers: list[Callable[[], None]] = []
    uow_factory = _build_uow_factory(settings, closers)
    trade_policy, dispute_policy, reputation, fees = build_policies(settings)
    context = BarterContext(
        uow_factory=uow_factory,
        ledger=_build_ledger(settings, closers),
        valuations=CatalogValuationProvider(uow_factory),
        notifier=Notifier(_build_hook(settings, closers)),
        trade_policy=trade_policy,
        dispute_policy=dispute_policy,
        reputation=reputation,
        fees=fees,
    )
    return BarterRuntime(context=context, closers=closers)


# ------------------------------------------------------------------
# FastAPI dependencies
# ------------------------------------------------------------------


def get_context(request: Request) -> BarterContext:
    """Return the BarterContext wired by the app factory."""
    return request.app.state.barter.context


def _use_case(cls):
    def dependency(request: Request):
        return cls(get_context(request))

    dependency.__name__ = f"get_{cls.__name__}"
    return dependency


get_register_user_use_case = _use_case(RegisterUserUseCase)
get_register_item_use_case = _use_case(RegisterItemUseCase)
get_propose_trade_use_case = _use_case(ProposeTradeUseCase)
get_respond_to_trade_use_case = _use_case(RespondToTradeUseCase)
get_cancel_trade_use_case = _use_case(CancelTradeUseCase)
get_fund_escrow_use_case = _use_case(FundEscrowUseCase)
get_escrow_status_use_case = _use_case(GetEscrowStatusUseCase)
get_submit_tracking_use_case = _use_case(SubmitTrackingUseCase)
get_confirm_satisfaction_use_case = _use_case(ConfirmSatisfactionUseCase)
get_open_dispute_use_case = _use_case(OpenDisputeUseCase)
get_respond_to_dispute_use_case = _use_case(RespondToDisputeUseCase)
get_post_mediation_message_use_case = _use_case(PostMediationMessageUseCase)
get_escalate_dispute_use_case = _use_case(EscalateDisputeUseCase)
get_resolve_dispute_use_case = _use_case(ResolveDisputeUseCase)
get_submit_rating_use_case = _use_case(SubmitRatingUseCase)
get_trade_use_case = _use_case(GetTradeUseCase)
get_negotiation_history_use_case = _use_case(GetNegotiationHistoryUseCase)
get_list_user_trades_use_case = _use_case(ListUserTradesUseCase)
get_dispute_use_case = _use_case(GetDisputeUseCase)
get_user_standing_use_case = _use_case(GetUserStandingUseCase)
get_list_trade_ratings_use_case = _use_case(ListTradeRatingsUseCase)
get_list_user_ratings_use_case = _use_case(ListUserRatingsUseCase)
get_sweep_deadlines_use_case = _use_case(SweepDeadlinesUseCase)
