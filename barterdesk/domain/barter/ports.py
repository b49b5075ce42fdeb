"""
Port interfaces (ABCs) for the barter bounded context.

Ports define the contracts that the domain requires from the outside world.
Infrastructure adapters implement these interfaces.
The domain layer never depends on concrete implementations.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Iterable, Optional

from barterdesk.domain.barter.entities import (
    AccountEvent,
    AccountEventKind,
    DisputeStatus,
    DisputeTicket,
    EscrowHold,
    Item,
    Trade,
    TradeEvent,
    TradeRating,
    TradeStatus,
    User,
    Valuation,
)


class Clock(ABC):
    """Port for reading the current time (timezone-aware, UTC)."""

    @abstractmethod
    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────────────
# Persistence
# ──────────────────────────────────────────────────────────────────────


class UserRepository(ABC):
    """Port for persisting and retrieving users."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[User]:
        """Return a user by id, or None if not found."""
        raise NotImplementedError

    @abstractmethod
    def save(self, user: User) -> None:
        raise NotImplementedError

    @abstractmethod
    def lock_for_update(self, user_id: str) -> None:
        """Hold the user row until the unit of work ends.

        Called before any balance check that is followed by a debit, so two
        transactions can never both spend the same funds.
        """
        raise NotImplementedError


class ItemRepository(ABC):
    """Port for persisting items and their ownership."""

    @abstractmethod
    def get(self, item_id: str) -> Optional[Item]:
        raise NotImplementedError

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> list[Item]:
        raise NotImplementedError

    @abstractmethod
    def save(self, item: Item) -> None:
        raise NotImplementedError

    @abstractmethod
    def reserve(self, expected_owners: dict[str, str], trade_id: str) -> None:
        """Atomically reserve items for a trade (compare-and-swap).

        Args:
            expected_owners: Mapping of item id to the user who must still
                own it.
            trade_id: Trade the items are committed to.

        Raises:
            ItemNoLongerAvailableError: If any item changed owner or is
                reserved by another trade. No item is reserved in that case.
        """
        raise NotImplementedError

    @abstractmethod
    def release(self, item_ids: Iterable[str], trade_id: str) -> None:
        """Clear the reservation held by ``trade_id`` on the given items."""
        raise NotImplementedError

    @abstractmethod
    def transfer(self, item_id: str, new_owner_id: str, trade_id: str) -> None:
        """Move ownership of a reserved item and clear the reservation."""
        raise NotImplementedError


class TradeRepository(ABC):
    """Port for persisting trades. Trades are never deleted."""

    @abstractmethod
    def get(self, trade_id: str) -> Optional[Trade]:
        raise NotImplementedError

    @abstractmethod
    def save(self, trade: Trade) -> None:
        """Insert or update a trade."""
        raise NotImplementedError

    @abstractmethod
    def list_pending_referencing(self, item_ids: Iterable[str]) -> list[Trade]:
        """Return PENDING_ACCEPTANCE trades offering any of the given items."""
        raise NotImplementedError

    @abstractmethod
    def list_by_status(self, statuses: Iterable[TradeStatus]) -> list[Trade]:
        raise NotImplementedError

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[Trade]:
        raise NotImplementedError


class DisputeRepository(ABC):
    """Port for persisting dispute tickets."""

    @abstractmethod
    def get(self, ticket_id: str) -> Optional[DisputeTicket]:
        raise NotImplementedError

    @abstractmethod
    def save(self, ticket: DisputeTicket) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_by_status(self, statuses: Iterable[DisputeStatus]) -> list[DisputeTicket]:
        raise NotImplementedError


class RatingRepository(ABC):
    """Port for persisting trade ratings."""

    @abstractmethod
    def save(self, rating: TradeRating) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_for_trade(self, trade_id: str) -> list[TradeRating]:
        raise NotImplementedError

    @abstractmethod
    def list_for_ratee(self, user_id: str) -> list[TradeRating]:
        raise NotImplementedError


class AccountLedger(ABC):
    """Append-only per-user ledger of balance, reputation and surplus events."""

    @abstractmethod
    def append(self, event: AccountEvent) -> bool:
        """Record an event.

        Returns:
            False if an event with the same key already exists (nothing
            is written), True otherwise.
        """
        raise NotImplementedError

    @abstractmethod
    def events_for(self, user_id: str) -> list[AccountEvent]:
        """Return a user's events in the order they were recorded."""
        raise NotImplementedError

    @abstractmethod
    def total(self, user_id: str, kind: AccountEventKind) -> int:
        """Return the sum of deltas of one kind for a user."""
        raise NotImplementedError


class BarterUnitOfWork(ABC):
    """Transactional boundary over all barter repositories.

    Used as a context manager: commits when the block exits normally and
    rolls back every write when it raises.
    """

    users: UserRepository
    items: ItemRepository
    trades: TradeRepository
    disputes: DisputeRepository
    ratings: RatingRepository
    accounts: AccountLedger

    def __enter__(self) -> "BarterUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    @abstractmethod
    def commit(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


# ──────────────────────────────────────────────────────────────────────
# External collaborators
# ──────────────────────────────────────────────────────────────────────


class ValuationProvider(ABC):
    """Port for obtaining an item's estimated market value."""

    @abstractmethod
    def get_emv(self, item_id: str) -> Valuation:
        """Return the EMV quote for an item.

        Raises:
            ValuationUnavailableError: If no value can be produced.
        """
        raise NotImplementedError


class LedgerGateway(ABC):
    """Port for the external escrow ledger.

    Every call is blocking with a bounded timeout and carries an
    idempotency key: repeating a call with the same key must not move
    money twice.
    """

    @abstractmethod
    def hold_funds(
        self,
        trade_id: str,
        payer_id: str,
        recipient_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> EscrowHold:
        """Place a hold on the payer's funds.

        Raises:
            LedgerUnavailableError: On timeout or connection failure.
            LedgerDeclinedError: If the ledger refuses the hold.
        """
        raise NotImplementedError

    @abstractmethod
    def release_funds(
        self, hold_id: str, amount_cents: int, idempotency_key: str
    ) -> EscrowHold:
        """Release (part of) a hold to its recipient."""
        raise NotImplementedError

    @abstractmethod
    def refund_funds(
        self, hold_id: str, amount_cents: int, idempotency_key: str
    ) -> EscrowHold:
        """Return (part of) a hold to its payer."""
        raise NotImplementedError

    @abstractmethod
    def get_hold_for_trade(self, trade_id: str) -> Optional[EscrowHold]:
        raise NotImplementedError


class NotificationHook(ABC):
    """Port for best-effort, fire-and-forget transition notifications."""

    @abstractmethod
    def emit(self, event: TradeEvent) -> None:
        raise NotImplementedError
