"""
Adapter: Process-local barter store.

Implements every repository port plus BarterUnitOfWork on plain dicts.
A unit of work holds the store lock for its whole duration and restores
a deep-copied snapshot on rollback, so writes are all-or-nothing and
units of work never interleave.

Repositories hand out copies: mutating a returned entity has no effect
until it is saved.
"""

import logging
import threading
from copy import deepcopy
from typing import Iterable, Optional

from barterdesk.domain.barter.entities import (
    AccountEvent,
    AccountEventKind,
    DisputeStatus,
    DisputeTicket,
    Item,
    Trade,
    TradeRating,
    TradeStatus,
    User,
)
from barterdesk.domain.barter.errors import ItemNoLongerAvailableError, ItemNotFoundError
from barterdesk.domain.barter.ports import (
    AccountLedger,
    BarterUnitOfWork,
    DisputeRepository,
    ItemRepository,
    RatingRepository,
    TradeRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


class InMemoryBarterStore:
    """Shared state behind every in-memory unit of work."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users: dict[str, User] = {}
        self.items: dict[str, Item] = {}
        self.trades: dict[str, Trade] = {}
        self.disputes: dict[str, DisputeTicket] = {}
        self.ratings: dict[str, TradeRating] = {}
        self.events: list[AccountEvent] = []
        self.event_keys: set[str] = set()

    def snapshot(self) -> dict:
        return deepcopy(
            {
                "users": self.users,
                "items": self.items,
                "trades": self.trades,
                "disputes": self.disputes,
                "ratings": self.ratings,
                "events": self.events,
                "event_keys": self.event_keys,
            }
        )

    def restore(self, snapshot: dict) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)


class InMemoryUserRepository(UserRepository):
    def __init__(self, store: InMemoryBarterStore) -> None:
        self._store = store

    def get(self, user_id: str) -> Optional[User]:
        return deepcopy(self._store.users.get(user_id))

    def save(self, user: User) -> None:
        self._store.users[user.id] = deepcopy(user)

    def lock_for_update(self, user_id: str) -> None:
        # The unit of work already holds the store lock.
        return None


class InMemoryItemRepository(ItemRepository):
    def __init__(self, store: InMemoryBarterStore) -> None:
        self._store = store

    def get(self, item_id: str) -> Optional[Item]:
        return deepcopy(self._store.items.get(item_id))

    def list_by_owner(self, owner_id: str) -> list[Item]:
        return [deepcopy(i) for i in self._store.items.values() if i.owner_id == owner_id]

    def save(self, item: Item) -> None:
        self._store.items[item.id] = deepcopy(item)

    def reserve(self, expected_owners: dict[str, str], trade_id: str) -> None:
        items = self._store.items
        for item_id, owner_id in expected_owners.items():
            item = items.get(item_id)
            if (
                item is None
                or item.owner_id != owner_id
                or item.reserved_by_trade_id not in (None, trade_id)
            ):
                raise ItemNoLongerAvailableError(item_id, trade_id=trade_id)
        for item_id in expected_owners:
            items[item_id].reserved_by_trade_id = trade_id

    def release(self, item_ids: Iterable[str], trade_id: str) -> None:
        for item_id in item_ids:
            item = self._store.items.get(item_id)
            if item is not None and item.reserved_by_trade_id == trade_id:
                item.reserved_by_trade_id = None

    def transfer(self, item_id: str, new_owner_id: str, trade_id: str) -> None:
        item = self._store.items.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        if item.reserved_by_trade_id != trade_id:
            raise ItemNoLongerAvailableError(item_id, trade_id=trade_id)
        item.owner_id = new_owner_id
        item.reserved_by_trade_id = None


class InMemoryTradeRepository(TradeRepository):
    def __init__(self, store: InMemoryBarterStore) -> None:
        self._store = store

    def get(self, trade_id: str) -> Optional[Trade]:
        return deepcopy(self._store.trades.get(trade_id))

    def save(self, trade: Trade) -> None:
        self._store.trades[trade.id] = deepcopy(trade)

    def list_pending_referencing(self, item_ids: Iterable[str]) -> list[Trade]:
        wanted = set(item_ids)
        return [
            deepcopy(t)
            for t in self._store.trades.values()
            if t.status is TradeStatus.PENDING_ACCEPTANCE and wanted & set(t.all_item_ids)
        ]

    def list_by_status(self, statuses: Iterable[TradeStatus]) -> list[Trade]:
        wanted = set(statuses)
        return [deepcopy(t) for t in self._store.trades.values() if t.status in wanted]

    def list_for_user(self, user_id: str) -> list[Trade]:
        return [deepcopy(t) for t in self._store.trades.values() if t.is_party(user_id)]


class InMemoryDisputeRepository(DisputeRepository):
    def __init__(self, store: InMemoryBarterStore) -> None:
        self._store = store

    def get(self, ticket_id: str) -> Optional[DisputeTicket]:
        return deepcopy(self._store.disputes.get(ticket_id))

    def save(self, ticket: DisputeTicket) -> None:
        self._store.disputes[ticket.id] = deepcopy(ticket)

    def list_by_status(self, statuses: Iterable[DisputeStatus]) -> list[DisputeTicket]:
        wanted = set(statuses)
        return [deepcopy(d) for d in self._store.disputes.values() if d.status in wanted]


class InMemoryRatingRepository(RatingRepository):
    def __init__(self, store: InMemoryBarterStore) -> None:
        self._store = store

    def save(self, rating: TradeRating) -> None:
        self._store.ratings[rating.id] = deepcopy(rating)

    def list_for_trade(self, trade_id: str) -> list[TradeRating]:
        return [deepcopy(r) for r in self._store.ratings.values() if r.trade_id == trade_id]

    def list_for_ratee(self, user_id: str) -> list[TradeRating]:
        return [deepcopy(r) for r in self._store.ratings.values() if r.ratee_id == user_id]


class InMemoryAccountLedger(AccountLedger):
    def __init__(self, store: InMemoryBarterStore) -> None:
        self._store = store

    def append(self, event: AccountEvent) -> bool:
        if event.event_key in self._store.event_keys:
            logger.debug("Account event replay ignored: key=%s", event.event_key)
            return False
        self._store.event_keys.add(event.event_key)
        self._store.events.append(event)
        return True

    def events_for(self, user_id: str) -> list[AccountEvent]:
        return [e for e in self._store.events if e.user_id == user_id]

    def total(self, user_id: str, kind: AccountEventKind) -> int:
        return sum(
            e.delta for e in self._store.events if e.user_id == user_id and e.kind is kind
        )


class InMemoryUnitOfWork(BarterUnitOfWork):
    """Serialised, snapshot-backed transaction over an InMemoryBarterStore."""

    def __init__(self, store: InMemoryBarterStore) -> None:
        self._store = store
        self._snapshot: Optional[dict] = None
        self.users = InMemoryUserRepository(store)
        self.items = InMemoryItemRepository(store)
        self.trades = InMemoryTradeRepository(store)
        self.disputes = InMemoryDisputeRepository(store)
        self.ratings = InMemoryRatingRepository(store)
        self.accounts = InMemoryAccountLedger(store)

    def __enter__(self) -> "InMemoryUnitOfWork":
        self._store.lock.acquire()
        self._snapshot = self._store.snapshot()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            super().__exit__(exc_type, exc, tb)
        finally:
            self._snapshot = None
            self._store.lock.release()

    def commit(self) -> None:
        self._snapshot = None

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._store.restore(self._snapshot)
            logger.debug("In-memory unit of work rolled back")
