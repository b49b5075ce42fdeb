"""
Pydantic schemas for barter API request/response validation.

These schemas enforce input validation and define the API contract.
Amounts are integer cents and never negative.
No business logic belongs here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, Field

from barterdesk.domain.barter.entities import (
    AccountEvent,
    DisputeTicket,
    Item,
    Trade,
    TradeAction,
)

ID_MAX_LEN = 64
SCORE_MIN = 1
SCORE_MAX = 5

EntityId = Annotated[str, Field(min_length=1, max_length=ID_MAX_LEN)]


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str


class ErrorResponse(BaseModel):
    """Standard error response returned by all error handlers."""

    error: str
    detail: str | None = None


# ------------------------------------------------------------------
# Catalog
# ------------------------------------------------------------------


class RegisterUserRequest(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=120)
    opening_balance: int = Field(0, ge=0, description="Opening cash balance in cents")
    is_moderator: bool = False
    subscription_tier: str = Field("FREE", pattern=r"^(FREE|PRO)$")
    subscription_active: bool = False
    user_id: Optional[str] = Field(None, min_length=1, max_length=ID_MAX_LEN)


class UserResponse(BaseModel):
    id: str
    display_name: str
    is_moderator: bool
    subscription_tier: str
    subscription_active: bool
    trades_this_cycle: int


class RegisterItemRequest(BaseModel):
    owner_id: EntityId
    name: str = Field(..., min_length=1, max_length=200)
    estimated_market_value: int = Field(..., ge=0, description="EMV in cents")
    valuation_source: str = Field(
        ..., pattern=r"^(API_VERIFIED|USER_DEFINED_UNIQUE|USER_DEFINED_GENERIC)$"
    )
    item_id: Optional[str] = Field(None, min_length=1, max_length=ID_MAX_LEN)


class ItemResponse(BaseModel):
    id: str
    owner_id: str
    name: str
    estimated_market_value: int
    valuation_source: str
    reserved_by_trade_id: Optional[str] = None

    @classmethod
    def from_entity(cls, item: Item) -> "ItemResponse":
        return cls(
            id=item.id,
            owner_id=item.owner_id,
            name=item.name,
            estimated_market_value=item.estimated_market_value,
            valuation_source=item.valuation_source.value,
            reserved_by_trade_id=item.reserved_by_trade_id,
        )


# ------------------------------------------------------------------
# Trades
# ------------------------------------------------------------------


class TradeTermsSchema(BaseModel):
    """Offer terms. ``proposer_*`` is always the offering side."""

    proposer_item_ids: list[str] = Field(default_factory=list, max_length=50)
    receiver_item_ids: list[str] = Field(default_factory=list, max_length=50)
    proposer_cash: int = Field(0, ge=0)
    receiver_cash: int = Field(0, ge=0)


class ProposeTradeRequest(TradeTermsSchema):
    proposer_id: EntityId
    receiver_id: EntityId


class RespondToTradeRequest(BaseModel):
    actor_id: EntityId
    action: TradeAction
    counter_terms: Optional[TradeTermsSchema] = None
    counter_message: Optional[str] = Field(None, max_length=1000)


class ActorRequest(BaseModel):
    actor_id: EntityId


class FundEscrowRequest(BaseModel):
    actor_id: Optional[str] = Field(None, min_length=1, max_length=ID_MAX_LEN)


class SubmitTrackingRequest(BaseModel):
    actor_id: EntityId
    tracking_number: str = Field(..., min_length=1, max_length=100)


class TradeTransitionItem(BaseModel):
    from_status: Optional[str]
    to_status: str
    actor_id: Optional[str]
    at: datetime
    reason: Optional[str] = None


class TradeResponse(BaseModel):
    """A trade as returned by every trade endpoint."""

    id: str
    status: str
    proposer_id: str
    receiver_id: str
    proposer_item_ids: list[str]
    receiver_item_ids: list[str]
    proposer_cash: int
    receiver_cash: int
    created_at: datetime
    updated_at: datetime
    parent_trade_id: Optional[str] = None
    counter_message: Optional[str] = None
    platform_fee_cents: int
    is_fee_waived: bool
    fee_payer_id: Optional[str] = None
    proposer_tracking_number: Optional[str] = None
    receiver_tracking_number: Optional[str] = None
    proposer_verified_satisfaction: bool
    receiver_verified_satisfaction: bool
    proposer_rated: bool
    receiver_rated: bool
    delivery_deadline: Optional[datetime] = None
    rating_deadline: Optional[datetime] = None
    dispute_ticket_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    escrow_payer_id: Optional[str] = None
    escrow_recipient_id: Optional[str] = None
    escrow_amount_cents: int
    escrow_hold_id: Optional[str] = None
    history: list[TradeTransitionItem]

    @classmethod
    def from_entity(cls, trade: Trade) -> "TradeResponse":
        return cls(
            id=trade.id,
            status=trade.status.value,
            proposer_id=trade.proposer_id,
            receiver_id=trade.receiver_id,
            proposer_item_ids=list(trade.proposer_item_ids),
            receiver_item_ids=list(trade.receiver_item_ids),
            proposer_cash=trade.proposer_cash,
            receiver_cash=trade.receiver_cash,
            created_at=trade.created_at,
            updated_at=trade.updated_at,
            parent_trade_id=trade.parent_trade_id,
            counter_message=trade.counter_message,
            platform_fee_cents=trade.platform_fee_cents,
            is_fee_waived=trade.is_fee_waived,
            fee_payer_id=trade.fee_payer_id,
            proposer_tracking_number=trade.proposer_tracking_number,
            receiver_tracking_number=trade.receiver_tracking_number,
            proposer_verified_satisfaction=trade.proposer_verified_satisfaction,
            receiver_verified_satisfaction=trade.receiver_verified_satisfaction,
            proposer_rated=trade.proposer_rated,
            receiver_rated=trade.receiver_rated,
            delivery_deadline=trade.delivery_deadline,
            rating_deadline=trade.rating_deadline,
            dispute_ticket_id=trade.dispute_ticket_id,
            cancellation_reason=(
                trade.cancellation_reason.value if trade.cancellation_reason else None
            ),
            escrow_payer_id=trade.escrow_payer_id,
            escrow_recipient_id=trade.escrow_recipient_id,
            escrow_amount_cents=trade.escrow_amount_cents,
            escrow_hold_id=trade.escrow_hold_id,
            history=[
                TradeTransitionItem(
                    from_status=h.from_status.value if h.from_status else None,
                    to_status=h.to_status.value,
                    actor_id=h.actor_id,
                    at=h.at,
                    reason=h.reason,
                )
                for h in trade.history
            ],
        )


class TradeListResponse(BaseModel):
    trades: list[TradeResponse]


class EscrowHoldItem(BaseModel):
    hold_id: str
    amount_cents: int
    status: str


class EscrowStatusResponse(BaseModel):
    trade_id: str
    required: bool
    amount_cents: int
    payer_id: Optional[str] = None
    recipient_id: Optional[str] = None
    hold: Optional[EscrowHoldItem] = None


# ------------------------------------------------------------------
# Disputes
# ------------------------------------------------------------------


class OpenDisputeRequest(BaseModel):
    initiator_id: EntityId
    dispute_type: str = Field(..., pattern=r"^(INR|SNAD|COUNTERFEIT|SHIPPING_DAMAGE)$")
    statement: str = Field(..., min_length=1, max_length=5000)
    attachments: list[str] = Field(default_factory=list, max_length=20)


class RespondToDisputeRequest(BaseModel):
    respondent_id: EntityId
    statement: str = Field(..., min_length=1, max_length=5000)
    attachments: list[str] = Field(default_factory=list, max_length=20)


class MediationMessageRequest(BaseModel):
    sender_id: EntityId
    text: str = Field(..., min_length=1, max_length=5000)


class ResolveDisputeRequest(BaseModel):
    moderator_id: EntityId
    resolution: str = Field(
        ..., pattern=r"^(TRADE_UPHELD|FULL_REFUND|PARTIAL_REFUND|TRADE_REVERSAL)$"
    )
    refund_ratio: Optional[Decimal] = Field(None, ge=0, le=1)
    notes: Optional[str] = Field(None, max_length=5000)


class MediationMessageItem(BaseModel):
    id: str
    sender_id: str
    text: str
    timestamp: datetime


class DisputeResponse(BaseModel):
    """A dispute ticket. Attachments are reported as a count only."""

    id: str
    trade_id: str
    initiator_id: str
    respondent_id: str
    dispute_type: str
    status: str
    created_at: datetime
    updated_at: datetime
    deadline_for_next_action: datetime
    initiator_statement: str
    respondent_statement: Optional[str] = None
    attachment_count: int
    mediation_log: list[MediationMessageItem]
    resolution: Optional[str] = None
    refund_ratio: Optional[Decimal] = None
    resolved_by: Optional[str] = None
    moderator_notes: Optional[str] = None

    @classmethod
    def from_entity(cls, ticket: DisputeTicket) -> "DisputeResponse":
        attachments = len(ticket.initiator_evidence.attachments)
        if ticket.respondent_evidence is not None:
            attachments += len(ticket.respondent_evidence.attachments)
        resolution = ticket.resolution
        return cls(
            id=ticket.id,
            trade_id=ticket.trade_id,
            initiator_id=ticket.initiator_id,
            respondent_id=ticket.respondent_id,
            dispute_type=ticket.dispute_type.value,
            status=ticket.status.value,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            deadline_for_next_action=ticket.deadline_for_next_action,
            initiator_statement=ticket.initiator_evidence.statement,
            respondent_statement=(
                ticket.respondent_evidence.statement if ticket.respondent_evidence else None
            ),
            attachment_count=attachments,
            mediation_log=[
                MediationMessageItem(
                    id=m.id, sender_id=m.sender_id, text=m.text, timestamp=m.timestamp
                )
                for m in ticket.mediation_log
            ],
            resolution=resolution.kind.value if resolution else None,
            refund_ratio=getattr(resolution, "refund_ratio", None),
            resolved_by=ticket.resolved_by,
            moderator_notes=ticket.moderator_notes,
        )


# ------------------------------------------------------------------
# Ratings
# ------------------------------------------------------------------


class SubmitRatingRequest(BaseModel):
    rater_id: EntityId
    overall_score: int = Field(..., ge=SCORE_MIN, le=SCORE_MAX)
    item_accuracy_score: Optional[int] = Field(None, ge=SCORE_MIN, le=SCORE_MAX)
    communication_score: Optional[int] = Field(None, ge=SCORE_MIN, le=SCORE_MAX)
    shipping_speed_score: Optional[int] = Field(None, ge=SCORE_MIN, le=SCORE_MAX)
    public_comment: Optional[str] = Field(None, max_length=2000)
    private_feedback: Optional[str] = Field(None, max_length=2000)


class RatingResponse(BaseModel):
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


class RatingListResponse(BaseModel):
    ratings: list[RatingResponse]


# ------------------------------------------------------------------
# Standing and maintenance
# ------------------------------------------------------------------


class AccountEventItem(BaseModel):
    event_key: str
    kind: str
    delta: int
    reason: str
    trade_id: Optional[str] = None
    recorded_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, event: AccountEvent) -> "AccountEventItem":
        return cls(
            event_key=event.event_key,
            kind=event.kind.value,
            delta=event.delta,
            reason=event.reason,
            trade_id=event.trade_id,
            recorded_at=event.recorded_at,
        )


class UserStandingResponse(BaseModel):
    user_id: str
    display_name: str
    balance: int
    valuation_reputation_score: int
    net_trade_surplus: int
    inventory: list[ItemResponse]
    events: list[AccountEventItem]


class SweepResponse(BaseModel):
    delivery_confirmed: list[str]
    completed: list[str]
    disputes_closed: list[str]
    disputes_escalated: list[str]
    failed: list[str]
