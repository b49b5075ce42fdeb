"""
Adapter: Catalog-backed valuation provider.

Reads each item's recorded estimated market value from the item store.
Confidence reflects how the value was obtained.
"""

import logging
from decimal import Decimal
from typing import Callable

from barterdesk.domain.barter.entities import Valuation, ValuationSource
from barterdesk.domain.barter.errors import ValuationUnavailableError
from barterdesk.domain.barter.ports import BarterUnitOfWork, ValuationProvider

logger = logging.getLogger(__name__)

SOURCE_CONFIDENCE = {
    ValuationSource.API_VERIFIED: Decimal("0.95"),
    ValuationSource.USER_DEFINED_UNIQUE: Decimal("0.6"),
    ValuationSource.USER_DEFINED_GENERIC: Decimal("0.4"),
}


class CatalogValuationProvider(ValuationProvider):
    """Serve EMV quotes from the items' own catalog entries."""

    def __init__(self, uow_factory: Callable[[], BarterUnitOfWork]) -> None:
        self._uow_factory = uow_factory

    def get_emv(self, item_id: str) -> Valuation:
        with self._uow_factory() as uow:
            item = uow.items.get(item_id)
        if item is None or item.estimated_market_value < 0:
            logger.warning("No valuation for item_id=%s", item_id)
            raise ValuationUnavailableError(item_id)
        return Valuation(
            item_id=item_id,
            value_cents=item.estimated_market_value,
            source=item.valuation_source,
            confidence=SOURCE_CONFIDENCE.get(item.valuation_source, Decimal("0.5")),
        )
