"""
Use case: List the ratings of a trade or a user as seen by a viewer.

Input: trade id or ratee id, plus the viewer's user id
Output: list[RatingView]
Side effects: None.
Failure cases: TradeNotFoundError.

Visibility:
    - an unrevealed rating is only visible to its rater;
    - private feedback is only visible to its rater.
"""

from typing import Optional

from barterdesk.application.barter.context import BarterContext, get_trade
from barterdesk.application.barter.dtos import RatingView
from barterdesk.domain.barter.entities import TradeRating


def to_view(rating: TradeRating, viewer_id: Optional[str]) -> RatingView:
    is_rater = viewer_id is not None and viewer_id == rating.rater_id
    return RatingView(
        id=rating.id,
        trade_id=rating.trade_id,
        rater_id=rating.rater_id,
        ratee_id=rating.ratee_id,
        overall_score=rating.overall_score,
        item_accuracy_score=rating.item_accuracy_score,
        communication_score=rating.communication_score,
        shipping_speed_score=rating.shipping_speed_score,
        created_at=rating.created_at,
        is_revealed=rating.is_revealed,
        public_comment=rating.public_comment,
        private_feedback=rating.private_feedback if is_rater else None,
    )


def _visible(rating: TradeRating, viewer_id: Optional[str]) -> bool:
    return rating.is_revealed or (viewer_id is not None and viewer_id == rating.rater_id)


class ListTradeRatingsUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, trade_id: str, viewer_id: Optional[str] = None) -> list[RatingView]:
        with self._ctx.uow_factory() as uow:
            get_trade(uow, trade_id)
            ratings = uow.ratings.list_for_trade(trade_id)
        return [to_view(r, viewer_id) for r in ratings if _visible(r, viewer_id)]


class ListUserRatingsUseCase:
    """Revealed ratings a user has received."""

    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, user_id: str, viewer_id: Optional[str] = None) -> list[RatingView]:
        with self._ctx.uow_factory() as uow:
            ratings = uow.ratings.list_for_ratee(user_id)
        return [to_view(r, viewer_id) for r in ratings if _visible(r, viewer_id)]
