"""
FastAPI router for the barter bounded context.

All routes delegate to use cases. No business logic here.
Input validation is handled by Pydantic schemas.
Error mapping is handled by centralized error handlers.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from barterdesk.application.barter.cancel_trade import CancelTradeUseCase
from barterdesk.application.barter.confirm_satisfaction import ConfirmSatisfactionUseCase
from barterdesk.application.barter.dtos import (
    CancelTradeCommand,
    ConfirmSatisfactionCommand,
    EscalateDisputeCommand,
    FundEscrowCommand,
    OpenDisputeCommand,
    PostMediationMessageCommand,
    ProposeTradeCommand,
    RatingView,
    RegisterItemCommand,
    RegisterUserCommand,
    ResolveDisputeCommand,
    RespondToDisputeCommand,
    RespondToTradeCommand,
    SubmitRatingCommand,
    SubmitTrackingCommand,
)
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
from barterdesk.domain.barter.dispute_machine import build_resolution
from barterdesk.domain.barter.entities import (
    DisputeType,
    ResolutionKind,
    SubscriptionTier,
    TradeTerms,
    ValuationSource,
)
from barterdesk.interfaces.barter.dependencies import (
    get_cancel_trade_use_case,
    get_confirm_satisfaction_use_case,
    get_dispute_use_case,
    get_escalate_dispute_use_case,
    get_escrow_status_use_case,
    get_fund_escrow_use_case,
    get_list_trade_ratings_use_case,
    get_list_user_ratings_use_case,
    get_list_user_trades_use_case,
    get_negotiation_history_use_case,
    get_open_dispute_use_case,
    get_post_mediation_message_use_case,
    get_propose_trade_use_case,
    get_register_item_use_case,
    get_register_user_use_case,
    get_resolve_dispute_use_case,
    get_respond_to_dispute_use_case,
    get_respond_to_trade_use_case,
    get_submit_rating_use_case,
    get_submit_tracking_use_case,
    get_sweep_deadlines_use_case,
    get_trade_use_case,
    get_user_standing_use_case,
)
from barterdesk.interfaces.barter.schemas import (
    AccountEventItem,
    ActorRequest,
    DisputeResponse,
    ErrorResponse,
    EscrowHoldItem,
    EscrowStatusResponse,
    FundEscrowRequest,
    ItemResponse,
    MediationMessageRequest,
    OpenDisputeRequest,
    ProposeTradeRequest,
    RatingListResponse,
    RatingResponse,
    RegisterItemRequest,
    RegisterUserRequest,
    ResolveDisputeRequest,
    RespondToDisputeRequest,
    RespondToTradeRequest,
    SubmitRatingRequest,
    SubmitTrackingRequest,
    SweepResponse,
    TradeListResponse,
    TradeResponse,
    UserResponse,
    UserStandingResponse,
)

router = APIRouter(prefix="/barter", tags=["barter"])

GUARD_RESPONSES = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}
LEDGER_RESPONSES = {
    **GUARD_RESPONSES,
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _rating_response(view: RatingView) -> RatingResponse:
    return RatingResponse(
        id=view.id,
        trade_id=view.trade_id,
        rater_id=view.rater_id,
        ratee_id=view.ratee_id,
        overall_score=view.overall_score,
        item_accuracy_score=view.item_accuracy_score,
        communication_score=view.communication_score,
        shipping_speed_score=view.shipping_speed_score,
        created_at=view.created_at,
        is_revealed=view.is_revealed,
        public_comment=view.public_comment,
        private_feedback=view.private_feedback,
    )


# ------------------------------------------------------------------
# Catalog
# ------------------------------------------------------------------


@router.post(
    "/users",
    response_model=UserResponse,
    status_code=201,
    responses={422: {"model": ErrorResponse}},
    summary="Register a user",
)
def register_user(
    request: RegisterUserRequest,
    use_case: RegisterUserUseCase = Depends(get_register_user_use_case),
) -> UserResponse:
    user = use_case.execute(
        RegisterUserCommand(
            display_name=request.display_name,
            opening_balance=request.opening_balance,
            is_moderator=request.is_moderator,
            subscription_tier=SubscriptionTier(request.subscription_tier),
            subscription_active=request.subscription_active,
            user_id=request.user_id,
        )
    )
    return UserResponse(
        id=user.id,
        display_name=user.display_name,
        is_moderator=user.is_moderator,
        subscription_tier=user.subscription_tier.value,
        subscription_active=user.subscription_active,
        trades_this_cycle=user.trades_this_cycle,
    )


@router.post(
    "/items",
    response_model=ItemResponse,
    status_code=201,
    responses=GUARD_RESPONSES,
    summary="Add an item to a user's inventory",
)
def register_item(
    request: RegisterItemRequest,
    use_case: RegisterItemUseCase = Depends(get_register_item_use_case),
) -> ItemResponse:
    item = use_case.execute(
        RegisterItemCommand(
            owner_id=request.owner_id,
            name=request.name,
            estimated_market_value=request.estimated_market_value,
            valuation_source=ValuationSource(request.valuation_source),
            item_id=request.item_id,
        )
    )
    return ItemResponse.from_entity(item)


@router.get(
    "/users/{user_id}/standing",
    response_model=UserStandingResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Balance, reputation, surplus and inventory of a user",
)
def get_user_standing(
    user_id: str,
    use_case: GetUserStandingUseCase = Depends(get_user_standing_use_case),
) -> UserStandingResponse:
    result = use_case.execute(user_id)
    return UserStandingResponse(
        user_id=result.user_id,
        display_name=result.display_name,
        balance=result.balance,
        valuation_reputation_score=result.valuation_reputation_score,
        net_trade_surplus=result.net_trade_surplus,
        inventory=[ItemResponse.from_entity(i) for i in result.inventory],
        events=[AccountEventItem.from_entity(e) for e in result.events],
    )


# ------------------------------------------------------------------
# Negotiation
# ------------------------------------------------------------------


@router.post(
    "/trades",
    response_model=TradeResponse,
    status_code=201,
    responses=GUARD_RESPONSES,
    summary="Propose a trade",
)
def propose_trade(
    request: ProposeTradeRequest,
    use_case: ProposeTradeUseCase = Depends(get_propose_trade_use_case),
) -> TradeResponse:
    trade = use_case.execute(
        ProposeTradeCommand(
            proposer_id=request.proposer_id,
            receiver_id=request.receiver_id,
            proposer_item_ids=tuple(request.proposer_item_ids),
            receiver_item_ids=tuple(request.receiver_item_ids),
            proposer_cash=request.proposer_cash,
            receiver_cash=request.receiver_cash,
        )
    )
    return TradeResponse.from_entity(trade)


@router.post(
    "/trades/{trade_id}/respond",
    response_model=TradeResponse,
    responses=LEDGER_RESPONSES,
    summary="Accept, reject or counter a pending trade",
    description="Returns the accepted or rejected trade, or the new counter-offer.",
)
def respond_to_trade(
    trade_id: str,
    request: RespondToTradeRequest,
    use_case: RespondToTradeUseCase = Depends(get_respond_to_trade_use_case),
) -> TradeResponse:
    counter = request.counter_terms
    trade = use_case.execute(
        RespondToTradeCommand(
            trade_id=trade_id,
            actor_id=request.actor_id,
            action=request.action,
            counter_terms=(
                TradeTerms(
                    proposer_item_ids=tuple(counter.proposer_item_ids),
                    receiver_item_ids=tuple(counter.receiver_item_ids),
                    proposer_cash=counter.proposer_cash,
                    receiver_cash=counter.receiver_cash,
                )
                if counter is not None
                else None
            ),
            counter_message=request.counter_message,
        )
    )
    return TradeResponse.from_entity(trade)


@router.post(
    "/trades/{trade_id}/cancel",
    response_model=TradeResponse,
    responses=LEDGER_RESPONSES,
    summary="Cancel a trade before escrow is funded",
)
def cancel_trade(
    trade_id: str,
    request: ActorRequest,
    use_case: CancelTradeUseCase = Depends(get_cancel_trade_use_case),
) -> TradeResponse:
    trade = use_case.execute(CancelTradeCommand(trade_id=trade_id, actor_id=request.actor_id))
    return TradeResponse.from_entity(trade)


@router.get(
    "/trades/{trade_id}",
    response_model=TradeResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a trade",
)
def get_trade(
    trade_id: str,
    use_case: GetTradeUseCase = Depends(get_trade_use_case),
) -> TradeResponse:
    return TradeResponse.from_entity(use_case.execute(trade_id))


@router.get(
    "/trades/{trade_id}/history",
    response_model=TradeListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Negotiation chain ending at this trade, oldest first",
)
def get_negotiation_history(
    trade_id: str,
    use_case: GetNegotiationHistoryUseCase = Depends(get_negotiation_history_use_case),
) -> TradeListResponse:
    return TradeListResponse(
        trades=[TradeResponse.from_entity(t) for t in use_case.execute(trade_id)]
    )


@router.get(
    "/users/{user_id}/trades",
    response_model=TradeListResponse,
    summary="Trades a user takes part in",
)
def list_user_trades(
    user_id: str,
    use_case: ListUserTradesUseCase = Depends(get_list_user_trades_use_case),
) -> TradeListResponse:
    return TradeListResponse(
        trades=[TradeResponse.from_entity(t) for t in use_case.execute(user_id)]
    )


# ------------------------------------------------------------------
# Escrow and shipping
# ------------------------------------------------------------------


@router.post(
    "/trades/{trade_id}/escrow",
    response_model=TradeResponse,
    responses=LEDGER_RESPONSES,
    summary="Fund the trade's escrow",
)
def fund_escrow(
    trade_id: str,
    request: FundEscrowRequest,
    use_case: FundEscrowUseCase = Depends(get_fund_escrow_use_case),
) -> TradeResponse:
    trade = use_case.execute(FundEscrowCommand(trade_id=trade_id, actor_id=request.actor_id))
    return TradeResponse.from_entity(trade)


@router.get(
    "/trades/{trade_id}/escrow",
    response_model=EscrowStatusResponse,
    responses=LEDGER_RESPONSES,
    summary="Cash differential and current hold of a trade",
)
def get_escrow_status(
    trade_id: str,
    use_case: GetEscrowStatusUseCase = Depends(get_escrow_status_use_case),
) -> EscrowStatusResponse:
    result = use_case.execute(trade_id)
    hold = result.hold
    return EscrowStatusResponse(
        trade_id=result.trade_id,
        required=result.required,
        amount_cents=result.amount_cents,
        payer_id=result.payer_id,
        recipient_id=result.recipient_id,
        hold=(
            EscrowHoldItem(
                hold_id=hold.hold_id,
                amount_cents=hold.amount_cents,
                status=hold.status.value,
            )
            if hold is not None
            else None
        ),
    )


@router.post(
    "/trades/{trade_id}/tracking",
    response_model=TradeResponse,
    responses=GUARD_RESPONSES,
    summary="Submit a shipment tracking number",
)
def submit_tracking(
    trade_id: str,
    request: SubmitTrackingRequest,
    use_case: SubmitTrackingUseCase = Depends(get_submit_tracking_use_case),
) -> TradeResponse:
    trade = use_case.execute(
        SubmitTrackingCommand(
            trade_id=trade_id,
            actor_id=request.actor_id,
            tracking_number=request.tracking_number,
        )
    )
    return TradeResponse.from_entity(trade)


@router.post(
    "/trades/{trade_id}/satisfaction",
    response_model=TradeResponse,
    responses=GUARD_RESPONSES,
    summary="Confirm the received items match the description",
)
def confirm_satisfaction(
    trade_id: str,
    request: ActorRequest,
    use_case: ConfirmSatisfactionUseCase = Depends(get_confirm_satisfaction_use_case),
) -> TradeResponse:
    trade = use_case.execute(
        ConfirmSatisfactionCommand(trade_id=trade_id, actor_id=request.actor_id)
    )
    return TradeResponse.from_entity(trade)


# ------------------------------------------------------------------
# Disputes
# ------------------------------------------------------------------


@router.post(
    "/trades/{trade_id}/disputes",
    response_model=DisputeResponse,
    status_code=201,
    responses=GUARD_RESPONSES,
    summary="Open a dispute on a trade",
)
def open_dispute(
    trade_id: str,
    request: OpenDisputeRequest,
    use_case: OpenDisputeUseCase = Depends(get_open_dispute_use_case),
) -> DisputeResponse:
    ticket = use_case.execute(
        OpenDisputeCommand(
            trade_id=trade_id,
            initiator_id=request.initiator_id,
            dispute_type=DisputeType(request.dispute_type),
            statement=request.statement,
            attachments=tuple(request.attachments),
        )
    )
    return DisputeResponse.from_entity(ticket)


@router.get(
    "/disputes/{ticket_id}",
    response_model=DisputeResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a dispute ticket",
)
def get_dispute(
    ticket_id: str,
    use_case: GetDisputeUseCase = Depends(get_dispute_use_case),
) -> DisputeResponse:
    return DisputeResponse.from_entity(use_case.execute(ticket_id))


@router.post(
    "/disputes/{ticket_id}/response",
    response_model=DisputeResponse,
    responses=GUARD_RESPONSES,
    summary="Respondent submits their evidence",
)
def respond_to_dispute(
    ticket_id: str,
    request: RespondToDisputeRequest,
    use_case: RespondToDisputeUseCase = Depends(get_respond_to_dispute_use_case),
) -> DisputeResponse:
    ticket = use_case.execute(
        RespondToDisputeCommand(
            ticket_id=ticket_id,
            respondent_id=request.respondent_id,
            statement=request.statement,
            attachments=tuple(request.attachments),
        )
    )
    return DisputeResponse.from_entity(ticket)


@router.post(
    "/disputes/{ticket_id}/messages",
    response_model=DisputeResponse,
    responses=GUARD_RESPONSES,
    summary="Post a mediation message",
)
def post_mediation_message(
    ticket_id: str,
    request: MediationMessageRequest,
    use_case: PostMediationMessageUseCase = Depends(get_post_mediation_message_use_case),
) -> DisputeResponse:
    ticket = use_case.execute(
        PostMediationMessageCommand(
            ticket_id=ticket_id, sender_id=request.sender_id, text=request.text
        )
    )
    return DisputeResponse.from_entity(ticket)


@router.post(
    "/disputes/{ticket_id}/escalate",
    response_model=DisputeResponse,
    responses=GUARD_RESPONSES,
    summary="Ask for a moderator",
)
def escalate_dispute(
    ticket_id: str,
    request: ActorRequest,
    use_case: EscalateDisputeUseCase = Depends(get_escalate_dispute_use_case),
) -> DisputeResponse:
    ticket = use_case.execute(
        EscalateDisputeCommand(ticket_id=ticket_id, actor_id=request.actor_id)
    )
    return DisputeResponse.from_entity(ticket)


@router.post(
    "/disputes/{ticket_id}/resolution",
    response_model=DisputeResponse,
    responses=LEDGER_RESPONSES,
    summary="Moderator resolves a dispute",
)
def resolve_dispute(
    ticket_id: str,
    request: ResolveDisputeRequest,
    use_case: ResolveDisputeUseCase = Depends(get_resolve_dispute_use_case),
) -> DisputeResponse:
    ticket = use_case.execute(
        ResolveDisputeCommand(
            ticket_id=ticket_id,
            moderator_id=request.moderator_id,
            resolution=build_resolution(
                ResolutionKind(request.resolution), request.refund_ratio
            ),
            notes=request.notes,
        )
    )
    return DisputeResponse.from_entity(ticket)


# ------------------------------------------------------------------
# Ratings
# ------------------------------------------------------------------


@router.post(
    "/trades/{trade_id}/ratings",
    response_model=RatingResponse,
    status_code=201,
    responses=LEDGER_RESPONSES,
    summary="Rate the counterparty of a trade",
)
def submit_rating(
    trade_id: str,
    request: SubmitRatingRequest,
    use_case: SubmitRatingUseCase = Depends(get_submit_rating_use_case),
) -> RatingResponse:
    view = use_case.execute(
        SubmitRatingCommand(
            trade_id=trade_id,
            rater_id=request.rater_id,
            overall_score=request.overall_score,
            item_accuracy_score=request.item_accuracy_score,
            communication_score=request.communication_score,
            shipping_speed_score=request.shipping_speed_score,
            public_comment=request.public_comment,
            private_feedback=request.private_feedback,
        )
    )
    return _rating_response(view)


@router.get(
    "/trades/{trade_id}/ratings",
    response_model=RatingListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Ratings of a trade as seen by the viewer",
)
def list_trade_ratings(
    trade_id: str,
    viewer_id: Optional[str] = None,
    use_case: ListTradeRatingsUseCase = Depends(get_list_trade_ratings_use_case),
) -> RatingListResponse:
    return RatingListResponse(
        ratings=[_rating_response(v) for v in use_case.execute(trade_id, viewer_id)]
    )


@router.get(
    "/users/{user_id}/ratings",
    response_model=RatingListResponse,
    summary="Revealed ratings a user has received",
)
def list_user_ratings(
    user_id: str,
    viewer_id: Optional[str] = None,
    use_case: ListUserRatingsUseCase = Depends(get_list_user_ratings_use_case),
) -> RatingListResponse:
    return RatingListResponse(
        ratings=[_rating_response(v) for v in use_case.execute(user_id, viewer_id)]
    )


# ------------------------------------------------------------------
# Maintenance
# ------------------------------------------------------------------


@router.post(
    "/maintenance/sweep",
    response_model=SweepResponse,
    summary="Enforce elapsed deadlines now",
)
def sweep_deadlines(
    use_case: SweepDeadlinesUseCase = Depends(get_sweep_deadlines_use_case),
) -> SweepResponse:
    result = use_case.execute()
    return SweepResponse(
        delivery_confirmed=result.delivery_confirmed,
        completed=result.completed,
        disputes_closed=result.disputes_closed,
        disputes_escalated=result.disputes_escalated,
        failed=result.failed,
    )
