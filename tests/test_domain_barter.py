"""
Tests for the barter domain services.

Pure logic only: no repositories, no ledger, no clock.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from barterdesk.domain.barter.dispute_machine import (
    DisputePolicy,
    build_resolution,
    close_automatically,
    escalate,
    escalate_overdue,
    open_ticket,
    post_message,
    resolve,
    submit_response,
)
from barterdesk.domain.barter.entities import (
    CancellationReason,
    DisputeStatus,
    DisputeType,
    FullRefund,
    PartialRefund,
    Party,
    Resolution,
    ResolutionKind,
    SubscriptionTier,
    Trade,
    TradeReversal,
    TradeStatus,
    TradeTerms,
    TradeUpheld,
    User,
    ValuationSource,
)
from barterdesk.domain.barter.errors import (
    ActorNotPermittedError,
    DisputeClosedError,
    InvalidResolutionError,
    InvalidTradeTermsError,
    InvalidTransitionError,
    ItemNoLongerAvailableError,
    MissingFieldError,
    TradeTerminalError,
)
from barterdesk.domain.barter.fees import FeePolicy
from barterdesk.domain.barter.reputation_engine import (
    GiveawayPolicy,
    ReputationEngine,
    ReputationPolicy,
    ScoreOutcome,
)
from barterdesk.domain.barter.settlement import plan_settlement, split
from barterdesk.domain.barter.trade_machine import (
    DISPUTABLE_STATUSES,
    TERMINAL_STATUSES,
    EscrowPayerRule,
    compute_cash_differential,
    enter_shipping,
    shipping_complete,
    transition,
    validate_terms,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_trade(
    give=("p1",),
    want=("r1",),
    proposer_cash=0,
    receiver_cash=0,
    status=TradeStatus.PENDING_ACCEPTANCE,
) -> Trade:
    return Trade(
        id="t1",
        proposer_id="alice",
        receiver_id="bob",
        proposer_item_ids=tuple(give),
        receiver_item_ids=tuple(want),
        proposer_cash=proposer_cash,
        receiver_cash=receiver_cash,
        created_at=NOW,
        updated_at=NOW,
        status=status,
    )


# ──────────────────────────────────────────────────────────────────────
# Trade machine
# ──────────────────────────────────────────────────────────────────────


class TestTradeTransitions:
    def test_transition_records_history(self):
        trade = make_trade()

        step = transition(trade, TradeStatus.ACCEPTED, "bob", NOW, "accepted")

        assert trade.status is TradeStatus.ACCEPTED
        assert step.from_status is TradeStatus.PENDING_ACCEPTANCE
        assert trade.history == [step]

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_trades_refuse_every_transition(self, status):
        trade = make_trade(status=status)

        for target in TradeStatus:
            with pytest.raises(TradeTerminalError):
                transition(trade, target, "alice", NOW)
        assert trade.status is status
        assert trade.history == []

    def test_invalidated_trade_reports_unavailable_item(self):
        trade = make_trade(status=TradeStatus.CANCELLED)
        trade.cancellation_reason = CancellationReason.ITEM_NO_LONGER_AVAILABLE
        trade.unavailable_item_id = "r1"

        with pytest.raises(ItemNoLongerAvailableError):
            transition(trade, TradeStatus.ACCEPTED, "bob", NOW)

    def test_skipping_states_is_rejected(self):
        trade = make_trade()

        with pytest.raises(InvalidTransitionError):
            transition(trade, TradeStatus.IN_TRANSIT, "alice", NOW)

    def test_dispute_only_from_disputable_states(self):
        for status in DISPUTABLE_STATUSES:
            trade = make_trade(status=status)
            transition(trade, TradeStatus.DISPUTE_OPENED, "alice", NOW)
            assert trade.status is TradeStatus.DISPUTE_OPENED

        with pytest.raises(InvalidTransitionError):
            transition(make_trade(), TradeStatus.DISPUTE_OPENED, "alice", NOW)

    def test_cash_only_trade_goes_straight_to_transit(self):
        trade = make_trade(give=(), want=(), proposer_cash=500, status=TradeStatus.ACCEPTED)

        enter_shipping(trade, None, NOW, timedelta(days=14))

        assert shipping_complete(trade)
        assert trade.status is TradeStatus.IN_TRANSIT
        assert trade.delivery_deadline == NOW + timedelta(days=14)

    def test_shipping_waits_for_every_shipping_side(self):
        trade = make_trade(status=TradeStatus.ACCEPTED)
        trade.proposer_tracking_number = "TRK-P"

        enter_shipping(trade, "alice", NOW, timedelta(days=14))

        assert trade.status is TradeStatus.SHIPPING_PENDING


class TestValidateTerms:
    def test_accepts_item_swap(self):
        validate_terms("alice", "bob", TradeTerms(("p1",), ("r1",)))

    @pytest.mark.parametrize(
        "proposer, receiver, terms",
        [
            ("alice", "alice", TradeTerms(("p1",), ())),
            ("alice", "bob", TradeTerms((), (), proposer_cash=-1)),
            ("alice", "bob", TradeTerms(("p1", "p1"), ())),
            ("alice", "bob", TradeTerms(("p1",), ("p1",))),
            ("alice", "bob", TradeTerms()),
            ("", "bob", TradeTerms(("p1",), ())),
        ],
    )
    def test_rejects_malformed_terms(self, proposer, receiver, terms):
        with pytest.raises(InvalidTradeTermsError):
            validate_terms(proposer, receiver, terms)


class TestCashDifferential:
    def test_balanced_trade_needs_no_escrow(self):
        diff = compute_cash_differential(make_trade(), {"p1": 10000, "r1": 10000})

        assert diff.amount_cents == 0
        assert not diff.requires_escrow
        assert diff.payer_id is None

    def test_surplus_side_pays_by_default(self):
        diff = compute_cash_differential(make_trade(), {"p1": 30000, "r1": 20000})

        assert diff.amount_cents == 10000
        assert diff.payer_id == "alice"
        assert diff.recipient_id == "bob"

    def test_deficit_side_rule_flips_payer(self):
        diff = compute_cash_differential(
            make_trade(), {"p1": 30000, "r1": 20000}, EscrowPayerRule.DEFICIT_SIDE
        )

        assert diff.payer_id == "bob"
        assert diff.recipient_id == "alice"

    def test_cash_counts_toward_value_given(self):
        trade = make_trade(receiver_cash=2500)

        diff = compute_cash_differential(trade, {"p1": 10000, "r1": 10000})

        assert diff.amount_cents == 2500
        assert diff.payer_id == "bob"


# ──────────────────────────────────────────────────────────────────────
# Settlement
# ──────────────────────────────────────────────────────────────────────


class TestSettlementPlan:
    @pytest.fixture
    def funded(self):
        trade = make_trade(status=TradeStatus.DISPUTE_OPENED)
        trade.escrow_amount_cents = 1001
        trade.escrow_hold_id = "hold-1"
        return trade

    def test_upheld_releases_everything(self, funded):
        plan = plan_settlement(funded, TradeUpheld())

        assert (plan.release_cents, plan.refund_cents) == (1001, 0)
        assert plan.transfer_items and plan.deliver_cash

    def test_full_refund_returns_escrow_and_items(self, funded):
        plan = plan_settlement(funded, FullRefund())

        assert (plan.release_cents, plan.refund_cents) == (0, 1001)
        assert not plan.transfer_items and not plan.deliver_cash

    def test_reversal_matches_full_refund_money(self, funded):
        plan = plan_settlement(funded, TradeReversal())

        assert plan.refund_cents == 1001
        assert not plan.transfer_items

    def test_partial_refund_rounds_half_up(self, funded):
        plan = plan_settlement(funded, PartialRefund(refund_ratio=Decimal("0.5")))

        assert plan.refund_cents == 501
        assert plan.release_cents == 500
        assert plan.transfer_items

    def test_unfunded_trade_moves_no_money(self):
        trade = make_trade(status=TradeStatus.DISPUTE_OPENED)
        trade.escrow_amount_cents = 5000

        plan = plan_settlement(trade, FullRefund())

        assert plan.refund_cents == 0

    def test_split_is_exact_on_whole_cents(self):
        assert split(10000, Decimal("0.25")) == 2500
        assert split(3, Decimal("0.5")) == 2


# ──────────────────────────────────────────────────────────────────────
# Disputes
# ──────────────────────────────────────────────────────────────────────


class TestDisputeMachine:
    @pytest.fixture
    def policy(self):
        return DisputePolicy(round_limit=2)

    @pytest.fixture
    def ticket(self, policy):
        trade = make_trade(status=TradeStatus.IN_TRANSIT)
        return open_ticket(
            "d1", trade, "alice", DisputeType.INR, "Nothing arrived", (), NOW, policy
        )

    def test_open_ticket_sets_respondent_and_deadline(self, ticket, policy):
        assert ticket.respondent_id == "bob"
        assert ticket.status is DisputeStatus.OPEN_AWAITING_RESPONSE
        assert ticket.deadline_for_next_action == NOW + policy.response_window
        assert ticket.trade_status_before_dispute is TradeStatus.IN_TRANSIT

    def test_outsider_cannot_open(self, policy):
        with pytest.raises(ActorNotPermittedError):
            open_ticket("d2", make_trade(), "mallory", DisputeType.INR, "x", (), NOW, policy)

    def test_statement_is_required(self, policy):
        with pytest.raises(MissingFieldError):
            open_ticket("d2", make_trade(), "alice", DisputeType.SNAD, "  ", (), NOW, policy)

    def test_only_respondent_may_answer(self, ticket, policy):
        with pytest.raises(ActorNotPermittedError):
            submit_response(ticket, "alice", "me too", (), NOW, policy)

        submit_response(ticket, "bob", "Shipped on time", ("receipt.pdf",), NOW, policy)

        assert ticket.status is DisputeStatus.IN_MEDIATION
        assert ticket.respondent_evidence.attachments == ("receipt.pdf",)
        assert ticket.deadline_for_next_action == NOW + policy.mediation_window

    def test_round_limit_escalates(self, ticket, policy):
        submit_response(ticket, "bob", "Shipped", (), NOW, policy)
        moderator = User(id="mod", display_name="Mod", is_moderator=True)
        alice = User(id="alice", display_name="Alice")
        bob = User(id="bob", display_name="Bob")

        assert not post_message(ticket, "m1", alice, "Where is it?", NOW, policy)
        assert not post_message(ticket, "m2", moderator, "Checking", NOW, policy)
        assert not post_message(ticket, "m3", bob, "In the mail", NOW, policy)
        assert post_message(ticket, "m4", alice, "Still nothing", NOW, policy)
        assert ticket.status is DisputeStatus.ESCALATED_TO_MODERATOR

    def test_outsider_cannot_post(self, ticket, policy):
        submit_response(ticket, "bob", "Shipped", (), NOW, policy)

        with pytest.raises(ActorNotPermittedError):
            post_message(ticket, "m1", User(id="eve", display_name="Eve"), "hi", NOW, policy)

    def test_escalate_requires_mediation(self, ticket, policy):
        with pytest.raises(InvalidTransitionError):
            escalate(ticket, "alice", NOW)

        submit_response(ticket, "bob", "Shipped", (), NOW, policy)
        escalate(ticket, "alice", NOW)

        assert ticket.status is DisputeStatus.ESCALATED_TO_MODERATOR

    def test_resolution_is_one_way(self, ticket):
        moderator = User(id="mod", display_name="Mod", is_moderator=True)

        resolve(ticket, moderator, FullRefund(), NOW, notes="Tracking never scanned")

        assert ticket.status is DisputeStatus.RESOLVED
        assert ticket.resolved_by == "mod"
        with pytest.raises(DisputeClosedError):
            resolve(ticket, moderator, TradeUpheld(), NOW)
        assert isinstance(ticket.resolution, FullRefund)

    def test_only_moderators_resolve(self, ticket):
        with pytest.raises(ActorNotPermittedError):
            resolve(ticket, User(id="alice", display_name="Alice"), FullRefund(), NOW)

    def test_refund_ratio_must_be_a_fraction(self, ticket):
        moderator = User(id="mod", display_name="Mod", is_moderator=True)

        with pytest.raises(InvalidResolutionError):
            resolve(ticket, moderator, PartialRefund(refund_ratio=Decimal("1.5")), NOW)
        assert ticket.resolution is None

    def test_auto_close_after_response_deadline(self, ticket, policy):
        assert not close_automatically(ticket, NOW + timedelta(hours=71), policy)

        assert close_automatically(ticket, NOW + timedelta(hours=72), policy)
        assert ticket.status is DisputeStatus.CLOSED_AUTOMATICALLY
        assert ticket.resolution == policy.default_resolution

    def test_stalled_mediation_escalates_after_its_window(self, ticket, policy):
        submit_response(ticket, "bob", "Shipped", (), NOW, policy)

        assert not escalate_overdue(ticket, NOW + timedelta(hours=119))

        assert escalate_overdue(ticket, NOW + timedelta(hours=120))
        assert ticket.status is DisputeStatus.ESCALATED_TO_MODERATOR
        assert not escalate_overdue(ticket, NOW + timedelta(hours=200))

    def test_resolution_base_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            Resolution()

    def test_build_resolution_variants(self):
        assert isinstance(build_resolution(ResolutionKind.TRADE_UPHELD), TradeUpheld)
        assert isinstance(build_resolution(ResolutionKind.TRADE_REVERSAL), TradeReversal)
        partial = build_resolution(ResolutionKind.PARTIAL_REFUND, Decimal("0.3"))
        assert partial.refund_ratio == Decimal("0.3")


# ──────────────────────────────────────────────────────────────────────
# Reputation
# ──────────────────────────────────────────────────────────────────────


class TestReputationEngine:
    def _scores(self, values, engine=None, trade=None, sources=None):
        engine = engine or ReputationEngine()
        proposer, receiver = engine.score_trade(trade or make_trade(), values, sources)
        return proposer, receiver

    def test_balanced_trade_rewards_both(self):
        proposer, receiver = self._scores({"p1": 10000, "r1": 10000})

        assert proposer.outcome is ScoreOutcome.BALANCED
        assert (proposer.reputation_delta, receiver.reputation_delta) == (1, 1)
        assert (proposer.surplus_delta, receiver.surplus_delta) == (0, 0)

    def test_overvaluing_side_is_penalised_alone(self):
        proposer, receiver = self._scores({"p1": 30000, "r1": 20000})

        assert proposer.outcome is ScoreOutcome.OVERVALUED
        assert proposer.reputation_delta == -10
        assert receiver.outcome is ScoreOutcome.NEUTRAL
        assert receiver.reputation_delta == 0
        assert proposer.surplus_delta == -10000
        assert receiver.surplus_delta == 10000

    def test_threshold_is_strict(self):
        proposer, _ = self._scores({"p1": 12000, "r1": 10000})
        assert proposer.outcome is ScoreOutcome.NEUTRAL

        proposer, _ = self._scores({"p1": 12001, "r1": 10000})
        assert proposer.outcome is ScoreOutcome.OVERVALUED

    def test_tolerance_widens_balanced_band(self):
        engine = ReputationEngine(ReputationPolicy(balanced_tolerance=Decimal("0.05")))

        proposer, receiver = self._scores({"p1": 10400, "r1": 10000}, engine)

        assert proposer.outcome is ScoreOutcome.BALANCED
        assert receiver.reputation_delta == 1

    def test_giveaway_is_neutral_by_default(self):
        trade = make_trade(want=())

        proposer, receiver = self._scores({"p1": 5000}, trade=trade)

        assert proposer.outcome is ScoreOutcome.GIVEAWAY
        assert proposer.reputation_delta == 0
        assert receiver.outcome is ScoreOutcome.NEUTRAL

    def test_giveaway_can_be_penalised(self):
        engine = ReputationEngine(ReputationPolicy(giveaway_policy=GiveawayPolicy.PENALIZE))

        proposer, _ = self._scores({"p1": 5000}, engine, trade=make_trade(want=()))

        assert proposer.reputation_delta == -10

    def test_api_verified_items_can_be_exempt(self):
        engine = ReputationEngine(ReputationPolicy(exempt_api_verified=True))
        sources = {"p1": ValuationSource.API_VERIFIED, "r1": ValuationSource.USER_DEFINED_GENERIC}

        proposer, _ = self._scores({"p1": 30000, "r1": 20000}, engine, sources=sources)

        assert proposer.outcome is ScoreOutcome.EXEMPT
        assert proposer.reputation_delta == 0

    def test_exemption_ignored_when_cash_is_given(self):
        engine = ReputationEngine(ReputationPolicy(exempt_api_verified=True))
        trade = make_trade(proposer_cash=1000)

        proposer, _ = self._scores(
            {"p1": 30000, "r1": 20000},
            engine,
            trade=trade,
            sources={"p1": ValuationSource.API_VERIFIED},
        )

        assert proposer.outcome is ScoreOutcome.OVERVALUED

    def test_scores_are_ordered_proposer_first(self):
        proposer, receiver = self._scores({"p1": 10000, "r1": 10000})

        assert proposer.party is Party.PROPOSER
        assert receiver.user_id == "bob"


# ──────────────────────────────────────────────────────────────────────
# Fees
# ──────────────────────────────────────────────────────────────────────


class TestFeePolicy:
    def test_free_tier_pays_flat_fee(self):
        quote = FeePolicy().quote(User(id="u", display_name="U"))

        assert quote.fee_cents == 1500
        assert not quote.is_waived
        assert quote.reason == "Standard escrow fee"

    def test_active_pro_gets_waivers(self):
        user = User(
            id="u",
            display_name="U",
            subscription_tier=SubscriptionTier.PRO,
            subscription_active=True,
        )

        quote = FeePolicy().quote(user)

        assert quote.is_waived
        assert quote.fee_cents == 0
        assert quote.remaining_free_trades == 2

    def test_pro_pays_after_cycle_limit(self):
        user = User(
            id="u",
            display_name="U",
            subscription_tier=SubscriptionTier.PRO,
            subscription_active=True,
            trades_this_cycle=3,
        )

        quote = FeePolicy().quote(user)

        assert quote.fee_cents == 1500
        assert "exceeded" in quote.reason

    def test_lapsed_pro_pays(self):
        user = User(id="u", display_name="U", subscription_tier=SubscriptionTier.PRO)

        quote = FeePolicy(flat_fee_cents=900).quote(user)

        assert quote.fee_cents == 900
        assert quote.reason == "Subscription not active"

    def _pro(self, **kwargs):
        return User(
            id="u",
            display_name="U",
            subscription_tier=SubscriptionTier.PRO,
            subscription_active=True,
            cycle_started_at=NOW,
            **kwargs,
        )

    def test_elapsed_cycle_quotes_a_waiver_again(self):
        user = self._pro(trades_this_cycle=3)

        assert not FeePolicy().quote(user, NOW + timedelta(days=29)).is_waived

        quote = FeePolicy().quote(user, NOW + timedelta(days=30))
        assert quote.is_waived
        assert quote.remaining_free_trades == 2

    def test_counting_a_waiver_opens_a_new_cycle_when_due(self):
        policy = FeePolicy(cycle_length=timedelta(days=7))
        user = self._pro(trades_this_cycle=3)

        policy.count_waived_trade(user, NOW + timedelta(days=8))

        assert user.trades_this_cycle == 1
        assert user.cycle_started_at == NOW + timedelta(days=8)

    def test_counting_within_the_cycle_keeps_its_start(self):
        user = self._pro(trades_this_cycle=1)

        FeePolicy().count_waived_trade(user, NOW + timedelta(days=2))

        assert user.trades_this_cycle == 2
        assert user.cycle_started_at == NOW
