"""
Per-trade mutual exclusion.

Every use case that mutates a trade holds that trade's lock for the whole
transition, including any external ledger call, so that at most one
transition is in flight per trade. A trade's lock lives only while some
thread holds or waits for it.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

logger = logging.getLogger(__name__)


@dataclass
class _LockEntry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class TradeLockRegistry:
    """Reference-counted re-entrant locks keyed by trade id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _acquire_entry(self, trade_id: str) -> _LockEntry:
        with self._guard:
            entry = self._locks.get(trade_id)
            if entry is None:
                entry = _LockEntry()
                self._locks[trade_id] = entry
            entry.users += 1
            return entry

    def _release_entry(self, trade_id: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[trade_id]

    @contextmanager
    def hold(self, trade_id: str) -> Iterator[None]:
        entry = self._acquire_entry(trade_id)
        try:
            with entry.lock:
                logger.debug("Acquired trade lock: trade_id=%s", trade_id)
                yield
        finally:
            self._release_entry(trade_id, entry)
