"""
Tests for the barter infrastructure adapters.

HTTP collaborators run against httpx.MockTransport; the SQL store runs
against a throwaway SQLite file.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from barterdesk.application.barter.dtos import ResolveDisputeCommand, SweepResult
from barterdesk.application.barter.resolve_dispute import ResolveDisputeUseCase
from barterdesk.domain.barter.entities import (
    AccountEvent,
    AccountEventKind,
    EscrowStatus,
    FullRefund,
    Item,
    NotificationType,
    TradeEvent,
    TradeStatus,
    ValuationSource,
)
from barterdesk.domain.barter.errors import (
    ItemNoLongerAvailableError,
    LedgerDeclinedError,
    LedgerUnavailableError,
    ValuationUnavailableError,
)
from barterdesk.domain.barter.ports import NotificationHook
from barterdesk.infrastructure.barter.ledger_gateway import (
    HttpLedgerGateway,
    InMemoryLedgerGateway,
)
from barterdesk.infrastructure.barter.notification_hooks import (
    CompositeNotificationHook,
    WebhookNotificationHook,
    event_payload,
)
from barterdesk.infrastructure.barter.scheduler import DeadlineSweepScheduler
from barterdesk.infrastructure.barter.sql_store import SqlUnitOfWork
from barterdesk.infrastructure.barter.valuation_provider import CatalogValuationProvider

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

HOLD_DOC = {
    "hold_id": "h-42",
    "trade_id": "t1",
    "payer_id": "alice",
    "recipient_id": "bob",
    "amount_cents": 10000,
    "status": "FUNDED",
}


def sample_event() -> TradeEvent:
    return TradeEvent(
        type=NotificationType.TRADE_ACCEPTED,
        trade_id="t1",
        status=TradeStatus.PAYMENT_PENDING,
        recipient_ids=("alice", "bob"),
        occurred_at=NOW,
        detail={"amount_cents": 10000},
    )


# ──────────────────────────────────────────────────────────────────────
# Ledger gateways
# ──────────────────────────────────────────────────────────────────────


class TestHttpLedgerGateway:
    def _gateway(self, handler):
        return HttpLedgerGateway(
            "https://ledger.test",
            api_key="secret",
            transport=httpx.MockTransport(handler),
        )

    def test_hold_sends_idempotency_key_and_auth(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json=HOLD_DOC)

        hold = self._gateway(handler).hold_funds("t1", "alice", "bob", 10000, "escrow-hold:t1")

        assert hold.hold_id == "h-42"
        assert hold.idempotency_key == "escrow-hold:t1"
        request = seen[0]
        assert request.url.path == "/holds"
        assert request.headers["Idempotency-Key"] == "escrow-hold:t1"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content)["amount_cents"] == 10000

    def test_refund_parses_status(self):
        def handler(request):
            assert request.url.path == "/holds/h-42/refund"
            return httpx.Response(200, json={**HOLD_DOC, "status": "REFUNDED"})

        hold = self._gateway(handler).refund_funds("h-42", 10000, "escrow-refund:t1")

        assert hold.status is EscrowStatus.REFUNDED

    def test_server_error_is_unavailable(self):
        gateway = self._gateway(lambda request: httpx.Response(503))

        with pytest.raises(LedgerUnavailableError):
            gateway.release_funds("h-42", 100, "escrow-release:t1")

    def test_client_error_is_declined_with_detail(self):
        gateway = self._gateway(
            lambda request: httpx.Response(422, json={"detail": "insufficient funds"})
        )

        with pytest.raises(LedgerDeclinedError, match="insufficient funds"):
            gateway.hold_funds("t1", "alice", "bob", 10000, "k")

    def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(LedgerUnavailableError):
            self._gateway(handler).hold_funds("t1", "alice", "bob", 10000, "k")

    def test_missing_hold_is_none(self):
        def handler(request):
            assert request.url.params["trade_id"] == "t9"
            return httpx.Response(404)

        assert self._gateway(handler).get_hold_for_trade("t9") is None


class TestInMemoryLedgerGateway:
    def test_same_key_moves_money_once(self):
        ledger = InMemoryLedgerGateway()

        first = ledger.hold_funds("t1", "alice", "bob", 10000, "escrow-hold:t1")
        second = ledger.hold_funds("t1", "alice", "bob", 10000, "escrow-hold:t1")
        ledger.release_funds(first.hold_id, 10000, "escrow-release:t1")
        ledger.release_funds(first.hold_id, 10000, "escrow-release:t1")

        assert first.hold_id == second.hold_id
        assert [op.kind for op in ledger.operations] == ["hold", "release"]
        assert ledger.get_hold_for_trade("t1").status is EscrowStatus.RELEASED

    def test_cannot_settle_more_than_held(self):
        ledger = InMemoryLedgerGateway()
        hold = ledger.hold_funds("t1", "alice", "bob", 1000, "h")
        ledger.refund_funds(hold.hold_id, 400, "r")

        with pytest.raises(LedgerDeclinedError):
            ledger.release_funds(hold.hold_id, 700, "x")

        updated = ledger.release_funds(hold.hold_id, 600, "x")
        assert updated.status is EscrowStatus.PARTIALLY_REFUNDED


# ──────────────────────────────────────────────────────────────────────
# Notifications
# ──────────────────────────────────────────────────────────────────────


class TestNotificationHooks:
    def test_payload_is_json_friendly(self):
        payload = event_payload(sample_event())

        assert payload["type"] == "TRADE_ACCEPTED"
        assert payload["occurred_at"] == NOW.isoformat()
        assert json.loads(json.dumps(payload)) == payload

    def test_webhook_posts_to_every_url(self):
        received = []

        def handler(request):
            received.append((str(request.url), json.loads(request.content)["trade_id"]))
            return httpx.Response(204)

        hook = WebhookNotificationHook(
            ["https://a.test/hook", "https://b.test/hook"],
            transport=httpx.MockTransport(handler),
        )
        hook.emit(sample_event())
        hook.close()

        assert sorted(received) == [
            ("https://a.test/hook", "t1"),
            ("https://b.test/hook", "t1"),
        ]

    def test_webhook_failure_is_reported_not_raised(self):
        hook = WebhookNotificationHook(
            ["https://a.test/hook"],
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        result = hook.deliver("https://a.test/hook", {"type": "X"})
        hook.close()

        assert not result.success
        assert result.status_code == 500

    def test_composite_isolates_failing_hooks(self):
        delivered = []

        class Broken(NotificationHook):
            def emit(self, event):
                raise RuntimeError("boom")

        class Recorder(NotificationHook):
            def emit(self, event):
                delivered.append(event.trade_id)

        CompositeNotificationHook([Broken(), Recorder()]).emit(sample_event())

        assert delivered == ["t1"]


# ──────────────────────────────────────────────────────────────────────
# SQL store
# ──────────────────────────────────────────────────────────────────────


class TestSqlStore:
    def _seed_item(self, engine, item_id="card", owner="alice"):
        with SqlUnitOfWork(engine) as uow:
            uow.items.save(
                Item(
                    id=item_id,
                    owner_id=owner,
                    name=item_id,
                    estimated_market_value=1000,
                    valuation_source=ValuationSource.API_VERIFIED,
                )
            )

    def test_reserve_is_compare_and_swap(self, sql_engine):
        self._seed_item(sql_engine)

        with SqlUnitOfWork(sql_engine) as uow:
            uow.items.reserve({"card": "alice"}, "t1")

        with pytest.raises(ItemNoLongerAvailableError):
            with SqlUnitOfWork(sql_engine) as uow:
                uow.items.reserve({"card": "alice"}, "t2")
        with pytest.raises(ItemNoLongerAvailableError):
            with SqlUnitOfWork(sql_engine) as uow:
                uow.items.reserve({"card": "bob"}, "t1")

        with SqlUnitOfWork(sql_engine) as uow:
            uow.items.transfer("card", "bob", "t1")
        with SqlUnitOfWork(sql_engine) as uow:
            item = uow.items.get("card")
        assert item.owner_id == "bob"
        assert item.reserved_by_trade_id is None

    def test_failed_unit_of_work_rolls_back(self, sql_engine):
        self._seed_item(sql_engine, "a")

        with pytest.raises(ItemNoLongerAvailableError):
            with SqlUnitOfWork(sql_engine) as uow:
                uow.items.reserve({"a": "alice", "missing": "alice"}, "t1")

        with SqlUnitOfWork(sql_engine) as uow:
            assert uow.items.get("a").reserved_by_trade_id is None

    def test_account_event_keys_are_unique(self, sql_engine):
        event = AccountEvent(
            event_key="t1:escrow-hold",
            user_id="alice",
            kind=AccountEventKind.BALANCE,
            delta=-500,
            reason="Escrow hold",
            trade_id="t1",
            recorded_at=NOW,
        )
        with SqlUnitOfWork(sql_engine) as uow:
            assert uow.accounts.append(event)
            assert not uow.accounts.append(event)

        with SqlUnitOfWork(sql_engine) as uow:
            assert uow.accounts.total("alice", AccountEventKind.BALANCE) == -500
            assert [e.event_key for e in uow.accounts.events_for("alice")] == ["t1:escrow-hold"]

    def test_lifecycle_through_sql(self, sql_market):
        m = sql_market
        m.user("alice", balance=50000)
        m.user("bob")
        m.user("mod", is_moderator=True)
        m.item("alice", "card-a", 30000)
        m.item("bob", "card-b", 20000)

        trade = m.fund(m.accept(m.propose("alice", "bob", give=["card-a"], want=["card-b"])))
        trade = m.complete(trade)

        assert trade.status is TradeStatus.COMPLETED
        assert [h.to_status for h in trade.history][-1] is TradeStatus.COMPLETED
        assert m.balance("bob") == 10000
        assert m.standing("alice").valuation_reputation_score == 90
        assert [i.id for i in m.standing("alice").inventory] == ["card-b"]

    def test_dispute_round_trips_through_sql(self, sql_market):
        m = sql_market
        m.user("alice", balance=50000)
        m.user("bob")
        m.user("mod", is_moderator=True)
        m.item("alice", "card-a", 30000)
        m.item("bob", "card-b", 20000)
        trade = m.ship_all(
            m.fund(m.accept(m.propose("alice", "bob", give=["card-a"], want=["card-b"])))
        )

        ticket = m.dispute(trade, "alice")
        resolved = ResolveDisputeUseCase(m.ctx).execute(
            ResolveDisputeCommand(ticket.id, "mod", FullRefund())
        )

        assert isinstance(resolved.resolution, FullRefund)
        assert m.trade(trade.id).status is TradeStatus.DISPUTE_RESOLVED
        assert m.balance("alice") == 50000


class TestCatalogValuationProvider:
    def test_quotes_catalog_value_with_confidence(self, market):
        market.user("alice")
        market.item("alice", "coin", 4200, ValuationSource.API_VERIFIED)

        quote = CatalogValuationProvider(market.ctx.uow_factory).get_emv("coin")

        assert quote.value_cents == 4200
        assert quote.confidence == Decimal("0.95")

    def test_unknown_item(self, market):
        with pytest.raises(ValuationUnavailableError):
            CatalogValuationProvider(market.ctx.uow_factory).get_emv("ghost")


# ──────────────────────────────────────────────────────────────────────
# Scheduler
# ──────────────────────────────────────────────────────────────────────


class TestDeadlineSweepScheduler:
    def test_run_now_records_result(self):
        scheduler = DeadlineSweepScheduler(lambda: SweepResult(completed=["t1"]))

        run = scheduler.run_now()

        assert run.result.completed == ["t1"]
        assert run.error is None
        assert scheduler.last_run is run

    def test_run_now_never_raises(self):
        def broken():
            raise RuntimeError("database gone")

        run = DeadlineSweepScheduler(broken).run_now()

        assert run.error == "database gone"
        assert run.finished_at is not None

    def test_start_and_stop(self):
        scheduler = DeadlineSweepScheduler(SweepResult, interval_seconds=3600)

        scheduler.start()
        try:
            assert scheduler.is_running
        finally:
            scheduler.stop()
        assert not scheduler.is_running
