"""
Domain entities for the barter bounded context.

Entities represent core business objects with identity and lifecycle.
They contain no framework imports and no IO operations.

Money is always an integer amount of minor currency units (cents).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class ValuationSource(Enum):
    """Where an item's estimated market value came from."""

    API_VERIFIED = "API_VERIFIED"
    USER_DEFINED_UNIQUE = "USER_DEFINED_UNIQUE"
    USER_DEFINED_GENERIC = "USER_DEFINED_GENERIC"


class SubscriptionTier(Enum):
    FREE = "FREE"
    PRO = "PRO"


class TradeStatus(Enum):
    """Lifecycle states of a trade."""

    PENDING_ACCEPTANCE = "PENDING_ACCEPTANCE"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COUNTERED = "COUNTERED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    SHIPPING_PENDING = "SHIPPING_PENDING"
    IN_TRANSIT = "IN_TRANSIT"
    COMPLETED_AWAITING_RATING = "COMPLETED_AWAITING_RATING"
    COMPLETED = "COMPLETED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"


class TradeAction(Enum):
    """Receiver responses to a pending proposal."""

    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"


class CancellationReason(Enum):
    BY_PARTY = "BY_PARTY"
    ITEM_NO_LONGER_AVAILABLE = "ITEM_NO_LONGER_AVAILABLE"


class Party(Enum):
    PROPOSER = "proposer"
    RECEIVER = "receiver"


class EscrowStatus(Enum):
    FUNDED = "FUNDED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class DisputeStatus(Enum):
    OPEN_AWAITING_RESPONSE = "OPEN_AWAITING_RESPONSE"
    IN_MEDIATION = "IN_MEDIATION"
    ESCALATED_TO_MODERATOR = "ESCALATED_TO_MODERATOR"
    RESOLVED = "RESOLVED"
    CLOSED_AUTOMATICALLY = "CLOSED_AUTOMATICALLY"


class DisputeType(Enum):
    INR = "INR"  # item not received
    SNAD = "SNAD"  # significantly not as described
    COUNTERFEIT = "COUNTERFEIT"
    SHIPPING_DAMAGE = "SHIPPING_DAMAGE"


class ResolutionKind(Enum):
    TRADE_UPHELD = "TRADE_UPHELD"
    FULL_REFUND = "FULL_REFUND"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    TRADE_REVERSAL = "TRADE_REVERSAL"


class AccountEventKind(Enum):
    """Running totals derived from the account ledger."""

    BALANCE = "BALANCE"
    REPUTATION = "REPUTATION"
    SURPLUS = "SURPLUS"


# ──────────────────────────────────────────────────────────────────────
# Users and items
# ──────────────────────────────────────────────────────────────────────


@dataclass
class User:
    """A marketplace participant.

    Balance, reputation score and net surplus are not stored here: they
    are derived from the user's account events.
    """

    id: str
    display_name: str
    is_moderator: bool = False
    wishlist: set[str] = field(default_factory=set)
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    subscription_active: bool = False
    trades_this_cycle: int = 0
    cycle_started_at: Optional[datetime] = None


@dataclass
class Item:
    """A collectible owned by exactly one user.

    While ``reserved_by_trade_id`` is set the item is committed to that
    trade and cannot be offered or accepted elsewhere.
    """

    id: str
    owner_id: str
    name: str
    estimated_market_value: int
    valuation_source: ValuationSource
    reserved_by_trade_id: Optional[str] = None


@dataclass(frozen=True)
class Valuation:
    """EMV quote returned by the valuation provider."""

    item_id: str
    value_cents: int
    source: ValuationSource
    confidence: Decimal


@dataclass(frozen=True)
class AccountEvent:
    """One append-only entry in a user's account ledger.

    ``event_key`` is unique; re-appending the same key is a no-op so that
    replaying a settlement never double-counts.
    """

    event_key: str
    user_id: str
    kind: AccountEventKind
    delta: int
    reason: str
    trade_id: Optional[str] = None
    recorded_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserStanding:
    """Derived running totals for a user."""

    user_id: str
    balance: int
    valuation_reputation_score: int
    net_trade_surplus: int


# ──────────────────────────────────────────────────────────────────────
# Trades
# ──────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TradeTerms:
    """What each side puts on the table."""

    proposer_item_ids: tuple[str, ...] = ()
    receiver_item_ids: tuple[str, ...] = ()
    proposer_cash: int = 0
    receiver_cash: int = 0


@dataclass(frozen=True)
class CashDifferential:
    """Net cash one party must put into escrow to settle the trade.

    ``amount_cents`` is zero (and both ids are None) for a balanced trade.
    """

    amount_cents: int
    payer_id: Optional[str] = None
    recipient_id: Optional[str] = None

    @property
    def requires_escrow(self) -> bool:
        return self.amount_cents > 0


@dataclass(frozen=True)
class EscrowHold:
    """A hold placed on the external ledger for a trade."""

    hold_id: str
    trade_id: str
    payer_id: str
    recipient_id: str
    amount_cents: int
    idempotency_key: str
    status: EscrowStatus = EscrowStatus.FUNDED


@dataclass(frozen=True)
class TradeTransition:
    """One recorded step in a trade's lifecycle."""

    from_status: Optional[TradeStatus]
    to_status: TradeStatus
    actor_id: Optional[str]
    at: datetime
    reason: Optional[str] = None


@dataclass
class Trade:
    """The transactional aggregate between two parties."""

    id: str
    proposer_id: str
    receiver_id: str
    proposer_item_ids: tuple[str, ...]
    receiver_item_ids: tuple[str, ...]
    proposer_cash: int
    receiver_cash: int
    created_at: datetime
    updated_at: datetime
    status: TradeStatus = TradeStatus.PENDING_ACCEPTANCE
    parent_trade_id: Optional[str] = None
    counter_message: Optional[str] = None

    platform_fee_cents: int = 0
    is_fee_waived: bool = False
    fee_payer_id: Optional[str] = None

    proposer_tracking_number: Optional[str] = None
    receiver_tracking_number: Optional[str] = None
    proposer_verified_satisfaction: bool = False
    receiver_verified_satisfaction: bool = False
    proposer_rated: bool = False
    receiver_rated: bool = False

    delivery_deadline: Optional[datetime] = None
    rating_deadline: Optional[datetime] = None
    dispute_ticket_id: Optional[str] = None
    cancellation_reason: Optional[CancellationReason] = None
    unavailable_item_id: Optional[str] = None

    valuation_snapshot: dict[str, int] = field(default_factory=dict)
    valuation_sources: dict[str, ValuationSource] = field(default_factory=dict)
    escrow_payer_id: Optional[str] = None
    escrow_recipient_id: Optional[str] = None
    escrow_amount_cents: int = 0
    escrow_hold_id: Optional[str] = None
    # Account event key of the payer debit backing an in-flight or placed hold.
    escrow_reservation_key: Optional[str] = None

    history: list[TradeTransition] = field(default_factory=list)

    @property
    def terms(self) -> TradeTerms:
        return TradeTerms(
            proposer_item_ids=self.proposer_item_ids,
            receiver_item_ids=self.receiver_item_ids,
            proposer_cash=self.proposer_cash,
            receiver_cash=self.receiver_cash,
        )

    @property
    def proposer_submitted_tracking(self) -> bool:
        return self.proposer_tracking_number is not None

    @property
    def receiver_submitted_tracking(self) -> bool:
        return self.receiver_tracking_number is not None

    @property
    def all_item_ids(self) -> tuple[str, ...]:
        return self.proposer_item_ids + self.receiver_item_ids

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.proposer_id, self.receiver_id)

    def party_of(self, user_id: str) -> Optional[Party]:
        if user_id == self.proposer_id:
            return Party.PROPOSER
        if user_id == self.receiver_id:
            return Party.RECEIVER
        return None

    def counterparty_of(self, user_id: str) -> str:
        return self.receiver_id if user_id == self.proposer_id else self.proposer_id

    def items_of(self, party: Party) -> tuple[str, ...]:
        if party is Party.PROPOSER:
            return self.proposer_item_ids
        return self.receiver_item_ids

    def cash_of(self, party: Party) -> int:
        if party is Party.PROPOSER:
            return self.proposer_cash
        return self.receiver_cash

    def user_of(self, party: Party) -> str:
        if party is Party.PROPOSER:
            return self.proposer_id
        return self.receiver_id


# ──────────────────────────────────────────────────────────────────────
# Disputes
# ──────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DisputeEvidence:
    statement: str
    attachments: tuple[str, ...] = ()


@dataclass(frozen=True)
class MediationMessage:
    id: str
    sender_id: str
    text: str
    timestamp: datetime


@dataclass(frozen=True)
class Resolution(ABC):
    """Base of the dispute resolution variants.

    Concrete variants carry only the payload their outcome needs.
    """

    @property
    @abstractmethod
    def kind(self) -> ResolutionKind:
        """The tag the variant stands for."""


@dataclass(frozen=True)
class TradeUpheld(Resolution):
    @property
    def kind(self) -> ResolutionKind:
        return ResolutionKind.TRADE_UPHELD


@dataclass(frozen=True)
class FullRefund(Resolution):
    @property
    def kind(self) -> ResolutionKind:
        return ResolutionKind.FULL_REFUND


@dataclass(frozen=True)
class PartialRefund(Resolution):
    """Escrow split: ``refund_ratio`` of the hold goes back to the payer."""

    refund_ratio: Decimal = Decimal("0.5")

    @property
    def kind(self) -> ResolutionKind:
        return ResolutionKind.PARTIAL_REFUND


@dataclass(frozen=True)
class TradeReversal(Resolution):
    @property
    def kind(self) -> ResolutionKind:
        return ResolutionKind.TRADE_REVERSAL


@dataclass
class DisputeTicket:
    """A contest attached to a trade while it is open."""

    id: str
    trade_id: str
    initiator_id: str
    respondent_id: str
    dispute_type: DisputeType
    created_at: datetime
    updated_at: datetime
    deadline_for_next_action: datetime
    initiator_evidence: DisputeEvidence
    status: DisputeStatus = DisputeStatus.OPEN_AWAITING_RESPONSE
    respondent_evidence: Optional[DisputeEvidence] = None
    mediation_log: list[MediationMessage] = field(default_factory=list)
    resolution: Optional[Resolution] = None
    resolved_by: Optional[str] = None
    moderator_notes: Optional[str] = None
    trade_status_before_dispute: Optional[TradeStatus] = None

    @property
    def is_closed(self) -> bool:
        return self.status in (
            DisputeStatus.RESOLVED,
            DisputeStatus.CLOSED_AUTOMATICALLY,
        )


# ──────────────────────────────────────────────────────────────────────
# Ratings
# ──────────────────────────────────────────────────────────────────────


@dataclass
class TradeRating:
    """One party's rating of the other after a trade.

    ``private_feedback`` is for the platform only and never shown to the ratee.
    """

    id: str
    trade_id: str
    rater_id: str
    ratee_id: str
    overall_score: int
    item_accuracy_score: int
    communication_score: int
    shipping_speed_score: int
    created_at: datetime
    public_comment: Optional[str] = None
    private_feedback: Optional[str] = None
    is_revealed: bool = False


# ──────────────────────────────────────────────────────────────────────
# Notifications
# ──────────────────────────────────────────────────────────────────────


class NotificationType(Enum):
    TRADE_PROPOSED = "TRADE_PROPOSED"
    TRADE_ACCEPTED = "TRADE_ACCEPTED"
    TRADE_REJECTED = "TRADE_REJECTED"
    TRADE_CANCELLED = "TRADE_CANCELLED"
    COUNTER_OFFER = "COUNTER_OFFER"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    TRACKING_ADDED = "TRACKING_ADDED"
    ITEMS_VERIFIED = "ITEMS_VERIFIED"
    TRADE_COMPLETED = "TRADE_COMPLETED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_UPDATED = "DISPUTE_UPDATED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    RATING_SUBMITTED = "RATING_SUBMITTED"


@dataclass(frozen=True)
class TradeEvent:
    """Something the outside world may want to hear about."""

    type: NotificationType
    trade_id: str
    status: TradeStatus
    recipient_ids: tuple[str, ...]
    occurred_at: datetime
    detail: dict = field(default_factory=dict)
