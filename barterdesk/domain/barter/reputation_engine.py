"""
Domain service: Valuation reputation scoring.

Pure business logic invoked once per completed trade. Scores each party
on how the value they offered compared to the value they received,
never on who got the better deal.
No framework imports. No IO. No side effects.

Outcomes per party:
    - balanced     both ratios within the tolerance band around 1 (+reward)
    - overvalued   value given exceeds value received by more than the
                   threshold fraction (-penalty, offering side only)
    - giveaway     nothing received for something given (policy driven)
    - neutral      anything else
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from barterdesk.domain.barter.entities import Party, Trade, ValuationSource
from barterdesk.domain.barter.trade_machine import value_given, value_received


class GiveawayPolicy(Enum):
    NEUTRAL = "neutral"
    PENALIZE = "penalize"


class ScoreOutcome(Enum):
    BALANCED = "balanced"
    OVERVALUED = "overvalued"
    GIVEAWAY = "giveaway"
    EXEMPT = "exempt"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class ReputationPolicy:
    """Tunable scoring parameters.

    Attributes:
        balanced_tolerance: Allowed distance of each ratio from 1 for the
            trade to count as balanced (0 means exact equality).
        overvaluation_threshold: Fraction above 1 that a ratio must
            strictly exceed to be penalised (0.20 means ratio > 1.2).
        balanced_reward: Score added to both parties of a balanced trade.
        overvaluation_penalty: Score removed from an overvaluing party.
        giveaway_policy: How to treat a party that received nothing.
        exempt_api_verified: Never penalise a party that only gave
            API-verified items and no cash.
    """

    balanced_tolerance: Decimal = Decimal("0")
    overvaluation_threshold: Decimal = Decimal("0.20")
    balanced_reward: int = 1
    overvaluation_penalty: int = 10
    giveaway_policy: GiveawayPolicy = GiveawayPolicy.NEUTRAL
    exempt_api_verified: bool = False


@dataclass(frozen=True)
class PartyScore:
    """Scoring result for one party of a completed trade."""

    user_id: str
    party: Party
    value_given: int
    value_received: int
    ratio: Decimal
    outcome: ScoreOutcome
    reputation_delta: int
    surplus_delta: int


def overvaluation_ratio(given: int, received: int) -> Decimal:
    """valueGiven / max(valueReceived, 1)."""
    return Decimal(given) / Decimal(max(received, 1))


class ReputationEngine:
    """Stateless scorer for completed trades."""

    def __init__(self, policy: Optional[ReputationPolicy] = None) -> None:
        self._policy = policy or ReputationPolicy()

    @property
    def policy(self) -> ReputationPolicy:
        return self._policy

    def score_trade(
        self,
        trade: Trade,
        values: dict[str, int],
        sources: Optional[dict[str, ValuationSource]] = None,
    ) -> list[PartyScore]:
        """Score both parties of a trade.

        Args:
            trade: The completed trade.
            values: EMV snapshot per item id, in cents.
            sources: Valuation source per item id. Only needed when the
                API-verified exemption is enabled.

        Returns:
            One PartyScore per party, proposer first.
        """
        sources = sources or {}
        parties = (Party.PROPOSER, Party.RECEIVER)
        given = {p: value_given(trade, p, values) for p in parties}
        received = {p: value_received(trade, p, values) for p in parties}
        ratios = {p: overvaluation_ratio(given[p], received[p]) for p in parties}

        balanced = all(
            received[p] > 0 and self._is_balanced(ratios[p]) for p in parties
        )

        scores = []
        for party in parties:
            if balanced:
                outcome = ScoreOutcome.BALANCED
            else:
                outcome = self._classify(
                    trade, party, given[party], received[party], ratios[party], sources
                )
            scores.append(
                PartyScore(
                    user_id=trade.user_of(party),
                    party=party,
                    value_given=given[party],
                    value_received=received[party],
                    ratio=ratios[party],
                    outcome=outcome,
                    reputation_delta=self._delta_for(outcome),
                    surplus_delta=received[party] - given[party],
                )
            )
        return scores

    def _is_balanced(self, ratio: Decimal) -> bool:
        return abs(ratio - 1) <= self._policy.balanced_tolerance

    def _classify(
        self,
        trade: Trade,
        party: Party,
        given: int,
        received: int,
        ratio: Decimal,
        sources: dict[str, ValuationSource],
    ) -> ScoreOutcome:
        if given == 0:
            return ScoreOutcome.NEUTRAL

        if received == 0:
            if self._policy.giveaway_policy is GiveawayPolicy.NEUTRAL:
                return ScoreOutcome.GIVEAWAY
            penalised = ScoreOutcome.GIVEAWAY
        elif ratio > 1 + self._policy.overvaluation_threshold:
            penalised = ScoreOutcome.OVERVALUED
        else:
            return ScoreOutcome.NEUTRAL

        if self._policy.exempt_api_verified and self._only_verified(trade, party, sources):
            return ScoreOutcome.EXEMPT
        return penalised

    @staticmethod
    def _only_verified(
        trade: Trade, party: Party, sources: dict[str, ValuationSource]
    ) -> bool:
        item_ids = trade.items_of(party)
        if not item_ids or trade.cash_of(party) > 0:
            return False
        return all(
            sources.get(item_id) is ValuationSource.API_VERIFIED for item_id in item_ids
        )

    def _delta_for(self, outcome: ScoreOutcome) -> int:
        if outcome is ScoreOutcome.BALANCED:
            return self._policy.balanced_reward
        if outcome is ScoreOutcome.OVERVALUED:
            return -self._policy.overvaluation_penalty
        if (
            outcome is ScoreOutcome.GIVEAWAY
            and self._policy.giveaway_policy is GiveawayPolicy.PENALIZE
        ):
            return -self._policy.overvaluation_penalty
        return 0
