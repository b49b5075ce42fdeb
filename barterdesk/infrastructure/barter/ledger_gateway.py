"""
Adapters: Escrow ledger gateways.

Two implementations of the LedgerGateway port:
    - InMemoryLedgerGateway: process-local ledger used when no external
      ledger is configured and in tests. Supports failure injection.
    - HttpLedgerGateway: calls an external ledger service over HTTP with
      httpx, a bounded timeout and an ``Idempotency-Key`` header on every
      money-moving call.

Both honour idempotency keys: repeating a call with the same key returns
the original result and moves no money.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Optional

import httpx

from barterdesk.domain.barter.entities import EscrowHold, EscrowStatus
from barterdesk.domain.barter.errors import LedgerDeclinedError, LedgerUnavailableError
from barterdesk.domain.barter.ports import LedgerGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerOperation:
    """One effective money movement on the in-memory ledger."""

    kind: str
    hold_id: str
    trade_id: str
    amount_cents: int
    idempotency_key: str


class InMemoryLedgerGateway(LedgerGateway):
    """Thread-safe, idempotent in-process ledger."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holds: dict[str, EscrowHold] = {}
        self._hold_by_trade: dict[str, str] = {}
        self._settled: dict[str, int] = {}
        self._results: dict[str, EscrowHold] = {}
        self._failures: list[Exception] = []
        self.operations: list[LedgerOperation] = []

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail_next(self, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls raise ``error``."""
        with self._lock:
            self._failures.extend([error] * times)

    def operations_of(self, kind: str) -> list[LedgerOperation]:
        return [op for op in self.operations if op.kind == kind]

    @property
    def holds(self) -> list[EscrowHold]:
        return list(self._holds.values())

    # ------------------------------------------------------------------
    # LedgerGateway
    # ------------------------------------------------------------------

    def _maybe_fail(self) -> None:
        if self._failures:
            raise self._failures.pop(0)

    def hold_funds(
        self,
        trade_id: str,
        payer_id: str,
        recipient_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> EscrowHold:
        with self._lock:
            self._maybe_fail()
            if idempotency_key in self._results:
                return self._holds[self._results[idempotency_key].hold_id]
            if amount_cents <= 0:
                raise LedgerDeclinedError("hold amount must be positive")

            hold = EscrowHold(
                hold_id=f"hold-{len(self._holds) + 1}",
                trade_id=trade_id,
                payer_id=payer_id,
                recipient_id=recipient_id,
                amount_cents=amount_cents,
                idempotency_key=idempotency_key,
            )
            self._holds[hold.hold_id] = hold
            self._hold_by_trade[trade_id] = hold.hold_id
            self._settled[hold.hold_id] = 0
            self._results[idempotency_key] = hold
            self.operations.append(
                LedgerOperation("hold", hold.hold_id, trade_id, amount_cents, idempotency_key)
            )
            logger.debug("Ledger hold placed: hold_id=%s amount=%d", hold.hold_id, amount_cents)
            return hold

    def _settle(
        self, kind: str, hold_id: str, amount_cents: int, idempotency_key: str
    ) -> EscrowHold:
        with self._lock:
            self._maybe_fail()
            if idempotency_key in self._results:
                return self._holds[hold_id]
            hold = self._holds.get(hold_id)
            if hold is None:
                raise LedgerDeclinedError(f"unknown hold {hold_id}")
            remaining = hold.amount_cents - self._settled[hold_id]
            if amount_cents <= 0 or amount_cents > remaining:
                raise LedgerDeclinedError(
                    f"cannot {kind} {amount_cents} from hold {hold_id} with {remaining} left"
                )

            self._settled[hold_id] += amount_cents
            fully_settled = self._settled[hold_id] == hold.amount_cents
            if kind == "release":
                released_all = fully_settled and hold.status is EscrowStatus.FUNDED
                status = EscrowStatus.RELEASED if released_all else hold.status
            elif fully_settled and hold.status is EscrowStatus.FUNDED:
                status = EscrowStatus.REFUNDED
            else:
                status = EscrowStatus.PARTIALLY_REFUNDED
            updated = replace(hold, status=status)
            self._holds[hold_id] = updated
            self._results[idempotency_key] = updated
            self.operations.append(
                LedgerOperation(kind, hold_id, hold.trade_id, amount_cents, idempotency_key)
            )
            return updated

    def release_funds(self, hold_id: str, amount_cents: int, idempotency_key: str) -> EscrowHold:
        return self._settle("release", hold_id, amount_cents, idempotency_key)

    def refund_funds(self, hold_id: str, amount_cents: int, idempotency_key: str) -> EscrowHold:
        return self._settle("refund", hold_id, amount_cents, idempotency_key)

    def get_hold_for_trade(self, trade_id: str) -> Optional[EscrowHold]:
        with self._lock:
            hold_id = self._hold_by_trade.get(trade_id)
            return self._holds.get(hold_id) if hold_id else None


class HttpLedgerGateway(LedgerGateway):
    """External ledger client.

    Expected service contract:
        POST /holds                     -> hold document
        POST /holds/{hold_id}/release   -> hold document
        POST /holds/{hold_id}/refund    -> hold document
        GET  /holds?trade_id=...        -> hold document or 404

    Args:
        base_url: Root URL of the ledger service.
        api_key: Optional bearer token.
        timeout_seconds: Bound on every call.
        transport: Optional httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
        params: Optional[dict] = None,
    ) -> Optional[dict]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            resp = self._client.request(
                method, path, json=payload, params=params, headers=headers
            )
        except httpx.TimeoutException as exc:
            logger.error("Ledger call timed out: %s %s", method, path)
            raise LedgerUnavailableError(f"timeout on {method} {path}") from exc
        except httpx.HTTPError as exc:
            logger.error("Ledger call failed: %s %s: %s", method, path, exc)
            raise LedgerUnavailableError(str(exc)) from exc

        if resp.status_code == 404 and method == "GET":
            return None
        if resp.status_code >= 500:
            raise LedgerUnavailableError(f"{method} {path} returned {resp.status_code}")
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise LedgerDeclinedError(str(detail))
        return resp.json()

    @staticmethod
    def _to_hold(data: dict, fallback_key: str = "") -> EscrowHold:
        return EscrowHold(
            hold_id=data["hold_id"],
            trade_id=data["trade_id"],
            payer_id=data["payer_id"],
            recipient_id=data["recipient_id"],
            amount_cents=int(data["amount_cents"]),
            idempotency_key=data.get("idempotency_key", fallback_key),
            status=EscrowStatus(data.get("status", EscrowStatus.FUNDED.value)),
        )

    def hold_funds(
        self,
        trade_id: str,
        payer_id: str,
        recipient_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> EscrowHold:
        data = self._request(
            "POST",
            "/holds",
            {
                "trade_id": trade_id,
                "payer_id": payer_id,
                "recipient_id": recipient_id,
                "amount_cents": amount_cents,
            },
            idempotency_key=idempotency_key,
        )
        return self._to_hold(data, idempotency_key)

    def release_funds(self, hold_id: str, amount_cents: int, idempotency_key: str) -> EscrowHold:
        data = self._request(
            "POST",
            f"/holds/{hold_id}/release",
            {"amount_cents": amount_cents},
            idempotency_key=idempotency_key,
        )
        return self._to_hold(data, idempotency_key)

    def refund_funds(self, hold_id: str, amount_cents: int, idempotency_key: str) -> EscrowHold:
        data = self._request(
            "POST",
            f"/holds/{hold_id}/refund",
            {"amount_cents": amount_cents},
            idempotency_key=idempotency_key,
        )
        return self._to_hold(data, idempotency_key)

    def get_hold_for_trade(self, trade_id: str) -> Optional[EscrowHold]:
        data = self._request("GET", "/holds", params={"trade_id": trade_id})
        return self._to_hold(data) if data else None
