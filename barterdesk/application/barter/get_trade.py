"""
Use cases: Read trades, their negotiation chain and dispute tickets.

Side effects: None.
Failure cases: TradeNotFoundError, DisputeNotFoundError.
"""

from barterdesk.application.barter.context import BarterContext, get_ticket, get_trade
from barterdesk.domain.barter.entities import DisputeTicket, Trade


class GetTradeUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, trade_id: str) -> Trade:
        with self._ctx.uow_factory() as uow:
            return get_trade(uow, trade_id)


class GetNegotiationHistoryUseCase:
    """Walks ``parent_trade_id`` links back to the original proposal.

    Returns the chain oldest first, ending with the requested trade.
    """

    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, trade_id: str) -> list[Trade]:
        chain: list[Trade] = []
        seen: set[str] = set()
        with self._ctx.uow_factory() as uow:
            current = get_trade(uow, trade_id)
            while current is not None and current.id not in seen:
                chain.append(current)
                seen.add(current.id)
                if current.parent_trade_id is None:
                    break
                current = uow.trades.get(current.parent_trade_id)
        chain.reverse()
        return chain


class ListUserTradesUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, user_id: str) -> list[Trade]:
        with self._ctx.uow_factory() as uow:
            trades = uow.trades.list_for_user(user_id)
        return sorted(trades, key=lambda t: t.created_at, reverse=True)


class GetDisputeUseCase:
    def __init__(self, context: BarterContext) -> None:
        self._ctx = context

    def execute(self, ticket_id: str) -> DisputeTicket:
        with self._ctx.uow_factory() as uow:
            return get_ticket(uow, ticket_id)
