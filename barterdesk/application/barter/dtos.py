"""
Data Transfer Objects for the barter application layer.

DTOs carry data between the interface and application layers.
They are plain dataclasses with no behavior.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from barterdesk.domain.barter.entities import (
    AccountEvent,
    DisputeType,
    EscrowHold,
    Item,
    Resolution,
    SubscriptionTier,
    TradeAction,
    TradeTerms,
    ValuationSource,
)


# ------------------------------------------------------------------
# Catalog
# ------------------------------------------------------------------


@dataclass(frozen=True)
class RegisterUserCommand:
    """Input DTO for onboarding a marketplace user.

    Attributes:
        display_name: Public name shown to trade partners.
        opening_balance: Cash available for trades, in cents.
        is_moderator: Grants the dispute resolution role.
        subscription_tier: FREE or PRO.
        subscription_active: Whether a PRO subscription is paid up.
        user_id: Optional caller-chosen id. Generated when omitted.
    """

    display_name: str
    opening_balance: int = 0
    is_moderator: bool = False
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    subscription_active: bool = False
    user_id: Optional[str] = None


@dataclass(frozen=True)
class RegisterItemCommand:
    """Input DTO for adding an item to a user's inventory."""

    owner_id: str
    name: str
    estimated_market_value: int
    valuation_source: ValuationSource
    item_id: Optional[str] = None


# ------------------------------------------------------------------
# Negotiation
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ProposeTradeCommand:
    """Input DTO for a new trade proposal.

    Attributes:
        proposer_id: User making the offer.
        receiver_id: User the offer is addressed to.
        proposer_item_ids: Items the proposer gives.
        receiver_item_ids: Items the proposer asks for.
        proposer_cash: Cash the proposer adds, in cents.
        receiver_cash: Cash the proposer asks for, in cents.
    """

    proposer_id: str
    receiver_id: str
    proposer_item_ids: tuple[str, ...] = ()
    receiver_item_ids: tuple[str, ...] = ()
    proposer_cash: int = 0
    receiver_cash: int = 0

    @property
    def terms(self) -> TradeTerms:
        return TradeTerms(
            proposer_item_ids=tuple(self.proposer_item_ids),
            receiver_item_ids=tuple(self.receiver_item_ids),
            proposer_cash=self.proposer_cash,
            receiver_cash=self.receiver_cash,
        )


@dataclass(frozen=True)
class RespondToTradeCommand:
    """Input DTO for the receiver's answer to a pending proposal.

    Attributes:
        trade_id: The pending trade.
        actor_id: Must be the trade's receiver.
        action: accept, reject or counter.
        counter_terms: Required for counter. Expressed from the countering
            user's side: ``proposer_*`` is what they now give.
        counter_message: Optional note attached to the counter-offer.
    """

    trade_id: str
    actor_id: str
    action: TradeAction
    counter_terms: Optional[TradeTerms] = None
    counter_message: Optional[str] = None


@dataclass(frozen=True)
class CancelTradeCommand:
    trade_id: str
    actor_id: str


# ------------------------------------------------------------------
# Escrow and shipping
# ------------------------------------------------------------------


@dataclass(frozen=True)
class FundEscrowCommand:
    """Input DTO for funding a trade's escrow.

    Attributes:
        trade_id: Trade in PAYMENT_PENDING.
        actor_id: When given, must be the escrow payer.
    """

    trade_id: str
    actor_id: Optional[str] = None


@dataclass(frozen=True)
class EscrowStatusResult:
    """Output DTO describing a trade's escrow position.

    Attributes:
        trade_id: The trade.
        required: Whether the trade needs escrow at all.
        amount_cents: Differential to be held, in cents.
        payer_id: Side that funds the hold.
        recipient_id: Side the hold is released to.
        hold: Current ledger hold, or None if not funded yet.
    """

    trade_id: str
    required: bool
    amount_cents: int
    payer_id: Optional[str]
    recipient_id: Optional[str]
    hold: Optional[EscrowHold]


@dataclass(frozen=True)
class SubmitTrackingCommand:
    trade_id: str
    actor_id: str
    tracking_number: str


@dataclass(frozen=True)
class ConfirmSatisfactionCommand:
    trade_id: str
    actor_id: str


# ------------------------------------------------------------------
# Disputes
# ------------------------------------------------------------------


@dataclass(frozen=True)
class OpenDisputeCommand:
    """Input DTO for contesting a trade.

    Attributes:
        trade_id: Trade being contested.
        initiator_id: Party filing the dispute.
        dispute_type: INR, SNAD, COUNTERFEIT or SHIPPING_DAMAGE.
        statement: Initiator's account of the problem.
        attachments: References to uploaded evidence.
    """

    trade_id: str
    initiator_id: str
    dispute_type: DisputeType
    statement: str
    attachments: tuple[str, ...] = ()


@dataclass(frozen=True)
class RespondToDisputeCommand:
    ticket_id: str
    respondent_id: str
    statement: str
    attachments: tuple[str, ...] = ()


@dataclass(frozen=True)
class PostMediationMessageCommand:
    ticket_id: str
    sender_id: str
    text: str


@dataclass(frozen=True)
class EscalateDisputeCommand:
    ticket_id: str
    actor_id: str


@dataclass(frozen=True)
class ResolveDisputeCommand:
    """Input DTO for a moderator's ruling.

    Attributes:
        ticket_id: Open dispute ticket.
        moderator_id: Must hold the moderator role.
        resolution: One of the resolution variants.
        notes: Optional moderator notes kept on the ticket.
    """

    ticket_id: str
    moderator_id: str
    resolution: Resolution
    notes: Optional[str] = None


# ------------------------------------------------------------------
# Ratings
# ------------------------------------------------------------------


@dataclass(frozen=True)
class SubmitRatingCommand:
    """Input DTO for rating the counterparty of a trade.

    Sub-scores default to the overall score when omitted.
    """

    trade_id: str
    rater_id: str
    overall_score: int
    item_accuracy_score: Optional[int] = None
    communication_score: Optional[int] = None
    shipping_speed_score: Optional[int] = None
    public_comment: Optional[str] = None
    private_feedback: Optional[str] = None


@dataclass(frozen=True)
class RatingView:
    """Output DTO for a rating as seen by a given viewer.

    ``private_feedback`` is only populated when the viewer is the rater.
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
    is_revealed: bool
    public_comment: Optional[str] = None
    private_feedback: Optional[str] = None


# ------------------------------------------------------------------
# Queries and maintenance
# ------------------------------------------------------------------


@dataclass(frozen=True)
class UserStandingResult:
    """Output DTO for a user's derived totals and history.

    Attributes:
        user_id: The user.
        display_name: Public name.
        balance: Available cash, in cents.
        valuation_reputation_score: Initial score plus reputation deltas.
        net_trade_surplus: Sum of value received minus value given.
        inventory: Items currently owned.
        events: The user's account events in recording order.
    """

    user_id: str
    display_name: str
    balance: int
    valuation_reputation_score: int
    net_trade_surplus: int
    inventory: list[Item] = field(default_factory=list)
    events: list[AccountEvent] = field(default_factory=list)


@dataclass(frozen=True)
class SweepResult:
    """Output DTO for one pass of the deadline sweeper.

    Attributes:
        delivery_confirmed: Trades auto-advanced past the delivery deadline.
        completed: Trades completed after the rating deadline.
        disputes_closed: Tickets closed because nobody responded.
        disputes_escalated: Tickets handed to a moderator after mediation
            ran out of time.
        failed: Ids whose processing raised and will be retried next pass.
    """

    delivery_confirmed: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    disputes_closed: list[str] = field(default_factory=list)
    disputes_escalated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
