"""
Best-effort notification dispatch.

Wraps the NotificationHook port so that a failing hook can never break
or roll back a trade transition.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from barterdesk.domain.barter.entities import NotificationType, Trade, TradeEvent
from barterdesk.domain.barter.ports import NotificationHook

logger = logging.getLogger(__name__)


class Notifier:
    """Builds TradeEvents and hands them to the configured hook."""

    def __init__(self, hook: Optional[NotificationHook] = None) -> None:
        self._hook = hook

    def notify(
        self,
        event_type: NotificationType,
        trade: Trade,
        now: datetime,
        recipients: Optional[Iterable[str]] = None,
        **detail,
    ) -> None:
        """Emit an event. Never raises.

        Args:
            event_type: What happened.
            trade: The trade concerned, in its new state.
            now: Event time.
            recipients: Users to inform. Defaults to both parties.
            **detail: Extra JSON-friendly context for the event.
        """
        if self._hook is None:
            return
        if recipients is None:
            recipients = (trade.proposer_id, trade.receiver_id)
        event = TradeEvent(
            type=event_type,
            trade_id=trade.id,
            status=trade.status,
            recipient_ids=tuple(recipients),
            occurred_at=now,
            detail=dict(detail),
        )
        try:
            self._hook.emit(event)
        except Exception as exc:
            logger.warning(
                "Notification hook failed: type=%s trade_id=%s error=%s",
                event_type.value,
                trade.id,
                exc,
            )
