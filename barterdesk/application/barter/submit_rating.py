"""
Use case: Rate the counterparty of a trade.

Input: SubmitRatingCommand
Output: RatingView (as seen by the rater)
Side effects: Stores the rating hidden. When the second rating arrives the
    trade completes: escrow is released, items and cash settle, both
    parties are scored and every rating of the trade is revealed.
Failure cases: InvalidScoreError, TradeNotFoundError, TradeTerminalError,
    InvalidTransitionError, ActorNotPermittedError, DuplicateRatingError,
    LedgerUnavailableError, LedgerDeclinedError.

Ratings are order-independent: either party may rate first.
"""

import logging
from typing import Optional

from barterdesk.application.barter.context import BarterContext, get_trade
from barterdesk.application.barter.dtos import RatingView, SubmitRatingCommand
from barterdesk.application.barter.list_ratings import to_view
from barterdesk.application.barter.settlement_runner import SettlementRunner
from barterdesk.domain.barter.entities import (
    NotificationType,
    Party,
    Trade,
    TradeRating,
    TradeStatus,
    TradeUpheld,
)
from barterdesk.domain.barter.errors import (
    ActorNotPermittedError,
    DuplicateRatingError,
    InvalidScoreError,
)
from barterdesk.domain.barter.settlement import plan_settlement
from barterdesk.domain.barter.trade_machine import ratings_complete, require_status

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 5


def _score(field_name: str, value: Optional[int], default: int) -> int:
    if value is None:
        value = default
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidScoreError(field_name, value)
    if value < MIN_SCORE or value > MAX_SCORE:
        raise InvalidScoreError(field_name, value)
    return value


class SubmitRatingUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context
        self._runner = SettlementRunner(context)

    def _check(self, trade: Trade, rater_id: str) -> Party:
        require_status(trade, TradeStatus.COMPLETED_AWAITING_RATING, "rate")
        party = trade.party_of(rater_id)
        if party is None:
            raise ActorNotPermittedError(rater_id, f"rate trade {trade.id}")
        already = trade.proposer_rated if party is Party.PROPOSER else trade.receiver_rated
        if already:
            raise DuplicateRatingError(trade.id, rater_id)
        return party

    def execute(self, command: SubmitRatingCommand) -> RatingView:
        overall = _score("overall_score", command.overall_score, 0)
        item_accuracy = _score("item_accuracy_score", command.item_accuracy_score, overall)
        communication = _score("communication_score", command.communication_score, overall)
        shipping_speed = _score("shipping_speed_score", command.shipping_speed_score, overall)

        with self._ctx.locks.hold(command.trade_id):
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, command.trade_id)
                party = self._check(trade, command.rater_id)
                completes = (
                    trade.receiver_rated if party is Party.PROPOSER else trade.proposer_rated
                )

            if completes:
                self._runner.settle_on_ledger(trade, plan_settlement(trade, TradeUpheld()))

            now = self._ctx.clock.now()
            with self._ctx.uow_factory() as uow:
                trade = get_trade(uow, command.trade_id)
                party = self._check(trade, command.rater_id)
                rating = TradeRating(
                    id=self._ctx.new_id(),
                    trade_id=trade.id,
                    rater_id=command.rater_id,
                    ratee_id=trade.counterparty_of(command.rater_id),
                    overall_score=overall,
                    item_accuracy_score=item_accuracy,
                    communication_score=communication,
                    shipping_speed_score=shipping_speed,
                    created_at=now,
                    public_comment=command.public_comment,
                    private_feedback=command.private_feedback,
                )
                uow.ratings.save(rating)
                if party is Party.PROPOSER:
                    trade.proposer_rated = True
                else:
                    trade.receiver_rated = True
                trade.updated_at = now

                completed = ratings_complete(trade)
                if completed:
                    self._runner.complete(
                        uow, trade, now, command.rater_id, "both parties rated"
                    )
                    rating.is_revealed = True
                else:
                    uow.trades.save(trade)

        logger.info(
            "Rating submitted: trade_id=%s rater=%s overall=%d completed=%s",
            trade.id,
            command.rater_id,
            overall,
            completed,
        )
        self._ctx.notifier.notify(
            NotificationType.RATING_SUBMITTED, trade, now, recipients=[rating.ratee_id]
        )
        if completed:
            self._ctx.notifier.notify(NotificationType.TRADE_COMPLETED, trade, now)
        return to_view(rating, command.rater_id)
