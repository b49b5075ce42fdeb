"""
Use cases: Onboard users and items.

Input: RegisterUserCommand / RegisterItemCommand
Output: User / Item
Side effects: Persists the entity. An opening balance is recorded as a
    BALANCE account event.
Failure cases: MissingFieldError, InvalidTradeTermsError, UserNotFoundError.
"""

import logging

from barterdesk.application.barter.context import BarterContext, get_user, record
from barterdesk.application.barter.dtos import RegisterItemCommand, RegisterUserCommand
from barterdesk.domain.barter.entities import AccountEventKind, Item, User
from barterdesk.domain.barter.errors import InvalidTradeTermsError, MissingFieldError

logger = logging.getLogger(__name__)


class RegisterUserUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: RegisterUserCommand) -> User:
        if not command.display_name or not command.display_name.strip():
            raise MissingFieldError("display_name")
        if command.opening_balance < 0:
            raise InvalidTradeTermsError("opening balance must be non-negative")

        now = self._ctx.clock.now()
        user = User(
            id=command.user_id or self._ctx.new_id(),
            display_name=command.display_name.strip(),
            is_moderator=command.is_moderator,
            subscription_tier=command.subscription_tier,
            subscription_active=command.subscription_active,
            cycle_started_at=now,
        )
        with self._ctx.uow_factory() as uow:
            uow.users.save(user)
            if command.opening_balance:
                record(
                    uow,
                    f"opening-balance:{user.id}",
                    user.id,
                    AccountEventKind.BALANCE,
                    command.opening_balance,
                    "Opening balance",
                    now,
                )
        logger.info("Registered user: user_id=%s moderator=%s", user.id, user.is_moderator)
        return user


class RegisterItemUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, command: RegisterItemCommand) -> Item:
        if not command.name or not command.name.strip():
            raise MissingFieldError("name")
        if command.estimated_market_value < 0:
            raise InvalidTradeTermsError("estimated market value must be non-negative")

        with self._ctx.uow_factory() as uow:
            get_user(uow, command.owner_id)
            item = Item(
                id=command.item_id or self._ctx.new_id(),
                owner_id=command.owner_id,
                name=command.name.strip(),
                estimated_market_value=command.estimated_market_value,
                valuation_source=command.valuation_source,
            )
            uow.items.save(item)
        logger.info(
            "Registered item: item_id=%s owner_id=%s emv=%d source=%s",
            item.id,
            item.owner_id,
            item.estimated_market_value,
            item.valuation_source.value,
        )
        return item
