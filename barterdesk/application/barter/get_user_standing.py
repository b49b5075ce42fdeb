"""
Use case: Read a user's balance, reputation and surplus.

Input: user id
Output: UserStandingResult
Side effects: None.
Failure cases: UserNotFoundError.

All three totals are derived from the append-only account ledger; the
reputation score is the configured initial score plus every delta.
"""

from barterdesk.application.barter.context import BarterContext, get_user
from barterdesk.application.barter.dtos import UserStandingResult
from barterdesk.domain.barter.entities import AccountEventKind


class GetUserStandingUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, user_id: str) -> UserStandingResult:
        with self._ctx.uow_factory() as uow:
            user = get_user(uow, user_id)
            accounts = uow.accounts
            return UserStandingResult(
                user_id=user.id,
                display_name=user.display_name,
                balance=accounts.total(user.id, AccountEventKind.BALANCE),
                valuation_reputation_score=(
                    self._ctx.trade_policy.initial_reputation_score
                    + accounts.total(user.id, AccountEventKind.REPUTATION)
                ),
                net_trade_surplus=accounts.total(user.id, AccountEventKind.SURPLUS),
                inventory=uow.items.list_by_owner(user.id),
                events=accounts.events_for(user.id),
            )
