"""
Adapters: Notification hooks.

    - LoggingNotificationHook: writes every event to the application log.
    - WebhookNotificationHook: POSTs the event as JSON to configured URLs
      from a small thread pool so callers never wait on the network.
    - CompositeNotificationHook: fans out to several hooks.

Delivery is best-effort. A failed webhook is logged and dropped.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

from barterdesk.domain.barter.entities import TradeEvent
from barterdesk.domain.barter.ports import NotificationHook

logger = logging.getLogger(__name__)


def event_payload(event: TradeEvent) -> dict:
    """Serialise a TradeEvent into a JSON-friendly dict."""
    return {
        "type": event.type.value,
        "trade_id": event.trade_id,
        "status": event.status.value,
        "recipient_ids": list(event.recipient_ids),
        "occurred_at": event.occurred_at.isoformat(),
        "detail": event.detail,
    }


class LoggingNotificationHook(NotificationHook):
    def emit(self, event: TradeEvent) -> None:
        logger.info(
            "Trade event: type=%s trade_id=%s status=%s recipients=%s",
            event.type.value,
            event.trade_id,
            event.status.value,
            ",".join(event.recipient_ids),
        )


# ════════════════════════════════════════════════════════════════════════
# Webhook
# ════════════════════════════════════════════════════════════════════════


@dataclass
class DeliveryResult:
    """Outcome of one webhook POST."""

    url: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class WebhookNotificationHook(NotificationHook):
    """POST each event to every configured URL.

    Args:
        urls: Webhook endpoints.
        timeout_seconds: Bound on each POST.
        max_workers: Size of the delivery thread pool.
        transport: Optional httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        urls: Sequence[str],
        timeout_seconds: float = 5.0,
        max_workers: int = 4,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._urls = list(urls)
        self._client = httpx.Client(timeout=timeout_seconds, transport=transport)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="barter-webhook"
        )

    def deliver(self, url: str, payload: dict) -> DeliveryResult:
        try:
            resp = self._client.post(url, json=payload)
            resp.raise_for_status()
            return DeliveryResult(url=url, success=True, status_code=resp.status_code)
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Webhook %s rejected event: status=%d", url, exc.response.status_code
            )
            return DeliveryResult(
                url=url,
                success=False,
                status_code=exc.response.status_code,
                error=str(exc),
            )
        except httpx.HTTPError as exc:
            logger.error("Webhook %s delivery failed: %s", url, exc)
            return DeliveryResult(url=url, success=False, error=str(exc))

    def emit(self, event: TradeEvent) -> None:
        payload = event_payload(event)
        for url in self._urls:
            self._executor.submit(self.deliver, url, payload)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._client.close()


class CompositeNotificationHook(NotificationHook):
    """Forward each event to every child hook, isolating their failures."""

    def __init__(self, hooks: Sequence[NotificationHook]) -> None:
        self._hooks = list(hooks)

    def emit(self, event: TradeEvent) -> None:
        for hook in self._hooks:
            try:
                hook.emit(event)
            except Exception as exc:
                logger.warning(
                    "Notification hook %s failed: %s", type(hook).__name__, exc
                )
