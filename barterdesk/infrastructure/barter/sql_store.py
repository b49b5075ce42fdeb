"""
Adapter: SQLAlchemy barter store.

Implements every repository port plus BarterUnitOfWork with SQLAlchemy
Core ``text()`` statements over one connection and transaction per unit
of work. The schema is portable between SQLite and PostgreSQL.

Item reservation is a conditional UPDATE (compare-and-swap): it only
matches rows still owned by the expected user and not reserved by another
trade, so two concurrent acceptances can never both reserve an item.
"""

import json
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection, Engine

from barterdesk.domain.barter.entities import (
    AccountEvent,
    AccountEventKind,
    DisputeStatus,
    DisputeTicket,
    Item,
    SubscriptionTier,
    Trade,
    TradeRating,
    TradeStatus,
    User,
    ValuationSource,
)
from barterdesk.domain.barter.errors import ItemNoLongerAvailableError
from barterdesk.domain.barter.ports import (
    AccountLedger,
    BarterUnitOfWork,
    DisputeRepository,
    ItemRepository,
    RatingRepository,
    TradeRepository,
    UserRepository,
)
from barterdesk.infrastructure.barter.sql_codec import (
    dump_rating,
    dump_ticket,
    dump_trade,
    load_rating,
    load_ticket,
    load_trade,
)

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS barter_users (
        id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        is_moderator BOOLEAN NOT NULL DEFAULT FALSE,
        wishlist TEXT NOT NULL DEFAULT '[]',
        subscription_tier TEXT NOT NULL DEFAULT 'FREE',
        subscription_active BOOLEAN NOT NULL DEFAULT FALSE,
        trades_this_cycle INTEGER NOT NULL DEFAULT 0,
        cycle_started_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS barter_items (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        name TEXT NOT NULL,
        estimated_market_value BIGINT NOT NULL,
        valuation_source TEXT NOT NULL,
        reserved_by_trade_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS barter_trades (
        id TEXT PRIMARY KEY,
        proposer_id TEXT NOT NULL,
        receiver_id TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS barter_trade_items (
        trade_id TEXT NOT NULL,
        item_id TEXT NOT NULL,
        PRIMARY KEY (trade_id, item_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS barter_disputes (
        id TEXT PRIMARY KEY,
        trade_id TEXT NOT NULL,
        status TEXT NOT NULL,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS barter_ratings (
        id TEXT PRIMARY KEY,
        trade_id TEXT NOT NULL,
        rater_id TEXT NOT NULL,
        ratee_id TEXT NOT NULL,
        payload TEXT NOT NULL,
        UNIQUE (trade_id, rater_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS barter_account_events (
        event_key TEXT PRIMARY KEY,
        seq BIGINT NOT NULL,
        user_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        delta BIGINT NOT NULL,
        reason TEXT NOT NULL,
        trade_id TEXT,
        recorded_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_barter_items_owner ON barter_items (owner_id)",
    "CREATE INDEX IF NOT EXISTS ix_barter_trades_status ON barter_trades (status)",
    "CREATE INDEX IF NOT EXISTS ix_barter_trade_items_item ON barter_trade_items (item_id)",
    "CREATE INDEX IF NOT EXISTS ix_barter_events_user ON barter_account_events (user_id, kind)",
)


def create_schema(engine: Engine) -> None:
    """Create the barter tables if they do not exist yet."""
    with engine.begin() as conn:
        for statement in SCHEMA:
            conn.execute(text(statement))
    logger.info("Barter schema ensured on %s", engine.url.render_as_string(hide_password=True))


class SqlUserRepository(UserRepository):
    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def get(self, user_id: str) -> Optional[User]:
        row = self._conn.execute(
            text(
                """
                SELECT id, display_name, is_moderator, wishlist,
                       subscription_tier, subscription_active, trades_this_cycle,
                       cycle_started_at
                FROM barter_users WHERE id = :id
                """
            ),
            {"id": user_id},
        ).fetchone()
        if not row:
            return None
        return User(
            id=row.id,
            display_name=row.display_name,
            is_moderator=bool(row.is_moderator),
            wishlist=set(json.loads(row.wishlist or "[]")),
            subscription_tier=SubscriptionTier(row.subscription_tier),
            subscription_active=bool(row.subscription_active),
            trades_this_cycle=row.trades_this_cycle,
            cycle_started_at=(
                datetime.fromisoformat(row.cycle_started_at) if row.cycle_started_at else None
            ),
        )

    def save(self, user: User) -> None:
        self._conn.execute(
            text(
                """
                INSERT INTO barter_users (id, display_name, is_moderator, wishlist,
                    subscription_tier, subscription_active, trades_this_cycle, cycle_started_at)
                VALUES (:id, :display_name, :is_moderator, :wishlist,
                    :subscription_tier, :subscription_active, :trades_this_cycle,
                    :cycle_started_at)
                ON CONFLICT (id) DO UPDATE SET
                    display_name = EXCLUDED.display_name,
                    is_moderator = EXCLUDED.is_moderator,
                    wishlist = EXCLUDED.wishlist,
                    subscription_tier = EXCLUDED.subscription_tier,
                    subscription_active = EXCLUDED.subscription_active,
                    trades_this_cycle = EXCLUDED.trades_this_cycle,
                    cycle_started_at = EXCLUDED.cycle_started_at
                """
            ),
            {
                "id": user.id,
                "display_name": user.display_name,
                "is_moderator": user.is_moderator,
                "wishlist": json.dumps(sorted(user.wishlist)),
                "subscription_tier": user.subscription_tier.value,
                "subscription_active": user.subscription_active,
                "trades_this_cycle": user.trades_this_cycle,
                "cycle_started_at": (
                    user.cycle_started_at.isoformat() if user.cycle_started_at else None
                ),
            },
        )

    def lock_for_update(self, user_id: str) -> None:
        # SQLite serialises writers itself and has no FOR UPDATE.
        if self._conn.dialect.name == "sqlite":
            return
        self._conn.execute(
            text("SELECT id FROM barter_users WHERE id = :id FOR UPDATE"),
            {"id": user_id},
        )


def _row_to_item(row) -> Item:
    return Item(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        estimated_market_value=row.estimated_market_value,
        valuation_source=ValuationSource(row.valuation_source),
        reserved_by_trade_id=row.reserved_by_trade_id,
    )


class SqlItemRepository(ItemRepository):
    _COLUMNS = "id, owner_id, name, estimated_market_value, valuation_source, reserved_by_trade_id"

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def get(self, item_id: str) -> Optional[Item]:
        row = self._conn.execute(
            text(f"SELECT {self._COLUMNS} FROM barter_items WHERE id = :id"),
            {"id": item_id},
        ).fetchone()
        return _row_to_item(row) if row else None

    def list_by_owner(self, owner_id: str) -> list[Item]:
        rows = self._conn.execute(
            text(f"SELECT {self._COLUMNS} FROM barter_items WHERE owner_id = :owner ORDER BY id"),
            {"owner": owner_id},
        ).fetchall()
        return [_row_to_item(r) for r in rows]

    def save(self, item: Item) -> None:
        self._conn.execute(
            text(
                """
                INSERT INTO barter_items (id, owner_id, name, estimated_market_value,
                    valuation_source, reserved_by_trade_id)
                VALUES (:id, :owner_id, :name, :emv, :source, :reserved)
                ON CONFLICT (id) DO UPDATE SET
                    owner_id = EXCLUDED.owner_id,
                    name = EXCLUDED.name,
                    estimated_market_value = EXCLUDED.estimated_market_value,
                    valuation_source = EXCLUDED.valuation_source,
                    reserved_by_trade_id = EXCLUDED.reserved_by_trade_id
                """
            ),
            {
                "id": item.id,
                "owner_id": item.owner_id,
                "name": item.name,
                "emv": item.estimated_market_value,
                "source": item.valuation_source.value,
                "reserved": item.reserved_by_trade_id,
            },
        )

    def reserve(self, expected_owners: dict[str, str], trade_id: str) -> None:
        query = text(
            """
            UPDATE barter_items SET reserved_by_trade_id = :trade_id
            WHERE id = :item_id
              AND owner_id = :owner_id
              AND (reserved_by_trade_id IS NULL OR reserved_by_trade_id = :trade_id)
            """
        )
        for item_id, owner_id in expected_owners.items():
            result = self._conn.execute(
                query, {"trade_id": trade_id, "item_id": item_id, "owner_id": owner_id}
            )
            if result.rowcount != 1:
                raise ItemNoLongerAvailableError(item_id, trade_id=trade_id)

    def release(self, item_ids: Iterable[str], trade_id: str) -> None:
        query = text(
            """
            UPDATE barter_items SET reserved_by_trade_id = NULL
            WHERE id = :item_id AND reserved_by_trade_id = :trade_id
            """
        )
        for item_id in item_ids:
            self._conn.execute(query, {"item_id": item_id, "trade_id": trade_id})

    def transfer(self, item_id: str, new_owner_id: str, trade_id: str) -> None:
        result = self._conn.execute(
            text(
                """
                UPDATE barter_items
                SET owner_id = :owner_id, reserved_by_trade_id = NULL
                WHERE id = :item_id AND reserved_by_trade_id = :trade_id
                """
            ),
            {"owner_id": new_owner_id, "item_id": item_id, "trade_id": trade_id},
        )
        if result.rowcount != 1:
            raise ItemNoLongerAvailableError(item_id, trade_id=trade_id)


class SqlTradeRepository(TradeRepository):
    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def get(self, trade_id: str) -> Optional[Trade]:
        row = self._conn.execute(
            text("SELECT payload FROM barter_trades WHERE id = :id"), {"id": trade_id}
        ).fetchone()
        return load_trade(row.payload) if row else None

    def save(self, trade: Trade) -> None:
        self._conn.execute(
            text(
                """
                INSERT INTO barter_trades (id, proposer_id, receiver_id, status, created_at, payload)
                VALUES (:id, :proposer_id, :receiver_id, :status, :created_at, :payload)
                ON CONFLICT (id) DO UPDATE SET
                    status = EXCLUDED.status,
                    payload = EXCLUDED.payload
                """
            ),
            {
                "id": trade.id,
                "proposer_id": trade.proposer_id,
                "receiver_id": trade.receiver_id,
                "status": trade.status.value,
                "created_at": trade.created_at.isoformat(),
                "payload": dump_trade(trade),
            },
        )
        link = text(
            """
            INSERT INTO barter_trade_items (trade_id, item_id)
            VALUES (:trade_id, :item_id)
            ON CONFLICT (trade_id, item_id) DO NOTHING
            """
        )
        for item_id in trade.all_item_ids:
            self._conn.execute(link, {"trade_id": trade.id, "item_id": item_id})

    def list_pending_referencing(self, item_ids: Iterable[str]) -> list[Trade]:
        wanted = list(item_ids)
        if not wanted:
            return []
        query = text(
            """
            SELECT DISTINCT t.id, t.created_at, t.payload
            FROM barter_trades t
            JOIN barter_trade_items ti ON ti.trade_id = t.id
            WHERE t.status = :status AND ti.item_id IN :item_ids
            ORDER BY t.created_at
            """
        ).bindparams(bindparam("item_ids", expanding=True))
        rows = self._conn.execute(
            query,
            {"status": TradeStatus.PENDING_ACCEPTANCE.value, "item_ids": wanted},
        ).fetchall()
        return [load_trade(r.payload) for r in rows]

    def list_by_status(self, statuses: Iterable[TradeStatus]) -> list[Trade]:
        values = [s.value for s in statuses]
        if not values:
            return []
        query = text(
            "SELECT payload FROM barter_trades WHERE status IN :statuses ORDER BY created_at"
        ).bindparams(bindparam("statuses", expanding=True))
        rows = self._conn.execute(query, {"statuses": values}).fetchall()
        return [load_trade(r.payload) for r in rows]

    def list_for_user(self, user_id: str) -> list[Trade]:
        rows = self._conn.execute(
            text(
                """
                SELECT payload FROM barter_trades
                WHERE proposer_id = :user_id OR receiver_id = :user_id
                ORDER BY created_at
                """
            ),
            {"user_id": user_id},
        ).fetchall()
        return [load_trade(r.payload) for r in rows]


class SqlDisputeRepository(DisputeRepository):
    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def get(self, ticket_id: str) -> Optional[DisputeTicket]:
        row = self._conn.execute(
            text("SELECT payload FROM barter_disputes WHERE id = :id"), {"id": ticket_id}
        ).fetchone()
        return load_ticket(row.payload) if row else None

    def save(self, ticket: DisputeTicket) -> None:
        self._conn.execute(
            text(
                """
                INSERT INTO barter_disputes (id, trade_id, status, payload)
                VALUES (:id, :trade_id, :status, :payload)
                ON CONFLICT (id) DO UPDATE SET
                    status = EXCLUDED.status,
                    payload = EXCLUDED.payload
                """
            ),
            {
                "id": ticket.id,
                "trade_id": ticket.trade_id,
                "status": ticket.status.value,
                "payload": dump_ticket(ticket),
            },
        )

    def list_by_status(self, statuses: Iterable[DisputeStatus]) -> list[DisputeTicket]:
        values = [s.value for s in statuses]
        if not values:
            return []
        query = text(
            "SELECT payload FROM barter_disputes WHERE status IN :statuses"
        ).bindparams(bindparam("statuses", expanding=True))
        rows = self._conn.execute(query, {"statuses": values}).fetchall()
        return [load_ticket(r.payload) for r in rows]


class SqlRatingRepository(RatingRepository):
    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def save(self, rating: TradeRating) -> None:
        self._conn.execute(
            text(
                """
                INSERT INTO barter_ratings (id, trade_id, rater_id, ratee_id, payload)
                VALUES (:id, :trade_id, :rater_id, :ratee_id, :payload)
                ON CONFLICT (id) DO UPDATE SET payload = EXCLUDED.payload
                """
            ),
            {
                "id": rating.id,
                "trade_id": rating.trade_id,
                "rater_id": rating.rater_id,
                "ratee_id": rating.ratee_id,
                "payload": dump_rating(rating),
            },
        )

    def list_for_trade(self, trade_id: str) -> list[TradeRating]:
        rows = self._conn.execute(
            text("SELECT payload FROM barter_ratings WHERE trade_id = :trade_id"),
            {"trade_id": trade_id},
        ).fetchall()
        return [load_rating(r.payload) for r in rows]

    def list_for_ratee(self, user_id: str) -> list[TradeRating]:
        rows = self._conn.execute(
            text("SELECT payload FROM barter_ratings WHERE ratee_id = :user_id"),
            {"user_id": user_id},
        ).fetchall()
        return [load_rating(r.payload) for r in rows]


class SqlAccountLedger(AccountLedger):
    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def append(self, event: AccountEvent) -> bool:
        result = self._conn.execute(
            text(
                """
                INSERT INTO barter_account_events
                    (event_key, seq, user_id, kind, delta, reason, trade_id, recorded_at)
                VALUES (
                    :event_key,
                    (SELECT COALESCE(MAX(seq), 0) + 1 FROM barter_account_events),
                    :user_id, :kind, :delta, :reason, :trade_id, :recorded_at
                )
                ON CONFLICT (event_key) DO NOTHING
                """
            ),
            {
                "event_key": event.event_key,
                "user_id": event.user_id,
                "kind": event.kind.value,
                "delta": event.delta,
                "reason": event.reason,
                "trade_id": event.trade_id,
                "recorded_at": event.recorded_at.isoformat() if event.recorded_at else None,
            },
        )
        if result.rowcount == 0:
            logger.debug("Account event replay ignored: key=%s", event.event_key)
            return False
        return True

    def events_for(self, user_id: str) -> list[AccountEvent]:
        rows = self._conn.execute(
            text(
                """
                SELECT event_key, user_id, kind, delta, reason, trade_id, recorded_at
                FROM barter_account_events
                WHERE user_id = :user_id
                ORDER BY seq
                """
            ),
            {"user_id": user_id},
        ).fetchall()
        return [
            AccountEvent(
                event_key=r.event_key,
                user_id=r.user_id,
                kind=AccountEventKind(r.kind),
                delta=r.delta,
                reason=r.reason,
                trade_id=r.trade_id,
                recorded_at=datetime.fromisoformat(r.recorded_at) if r.recorded_at else None,
            )
            for r in rows
        ]

    def total(self, user_id: str, kind: AccountEventKind) -> int:
        value = self._conn.execute(
            text(
                """
                SELECT COALESCE(SUM(delta), 0) FROM barter_account_events
                WHERE user_id = :user_id AND kind = :kind
                """
            ),
            {"user_id": user_id, "kind": kind.value},
        ).scalar()
        return int(value or 0)


class SqlUnitOfWork(BarterUnitOfWork):
    """One connection and one transaction per unit of work."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._conn: Optional[Connection] = None
        self._tx = None

    def __enter__(self) -> "SqlUnitOfWork":
        self._conn = self._engine.connect()
        self._tx = self._conn.begin()
        self.users = SqlUserRepository(self._conn)
        self.items = SqlItemRepository(self._conn)
        self.trades = SqlTradeRepository(self._conn)
        self.disputes = SqlDisputeRepository(self._conn)
        self.ratings = SqlRatingRepository(self._conn)
        self.accounts = SqlAccountLedger(self._conn)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            super().__exit__(exc_type, exc, tb)
        finally:
            self._conn.close()
            self._conn = None

    def commit(self) -> None:
        self._tx.commit()

    def rollback(self) -> None:
        self._tx.rollback()
        logger.debug("SQL unit of work rolled back")
