"""In-process stock ledger implementing ``StockLedgerPort``.

``InMemoryStockLedger`` gives the same guarantees as the ledger service
(all-or-nothing reservations, per-reservation idempotent commit/release)
without any network calls. It is used by unit tests and local development,
where deterministic behavior is useful and the ledger service is not
running. State lives in the process, so it is not shared between workers.
"""

import threading
from collections import defaultdict
from typing import Dict, List, Tuple

from .domain import StockError, StockKey, StockLedgerPort, StockLine

RESERVED, COMMITTED, RELEASED = "reserved", "committed", "released"


def merge_lines(lines: List[StockLine]) -> List[Tuple[StockKey, int, int]]:
    """Aggregate quantities per key, keeping the first line index per key."""
    merged: Dict[StockKey, List[int]] = {}
    for idx, line in enumerate(lines):
        if line.key in merged:
            merged[line.key][0] += line.quantity
        else:
            merged[line.key] = [line.quantity, idx]
    return [(key, qty, idx) for key, (qty, idx) in merged.items()]


class InMemoryStockLedger(StockLedgerPort):
    """Thread-safe ledger holding stock counters in a dict.

    A single lock covers check and decrement of every key in a reservation,
    so no reader ever observes a partially applied reservation.
    """

    def __init__(self, stock: Dict[StockKey, int] | None = None):
        self._lock = threading.Lock()
        self._available: Dict[StockKey, int] = dict(stock or {})
        self._sales: Dict[StockKey, int] = defaultdict(int)
        self._reservations: Dict[str, str] = {}

    def available(self, key: StockKey) -> int:
        with self._lock:
            return self._available.get(key, 0)

    def sales(self, key: StockKey) -> int:
        with self._lock:
            return self._sales[key]

    def reservation_state(self, reservation_id: str) -> str | None:
        with self._lock:
            return self._reservations.get(reservation_id)

    def get_available(self, keys: List[StockKey]) -> Dict[StockKey, int]:
        with self._lock:
            return {key: self._available.get(key, 0) for key in keys}

    def set_available(self, key: StockKey, available: int) -> None:
        if available < 0:
            raise ValueError("NEGATIVE_STOCK")
        with self._lock:
            self._available[key] = available

    def reserve(self, reservation_id: str, lines: List[StockLine]) -> None:
        """Decrement every line or none.

        Raises:
            StockError: With ``line`` set to the first line that cannot be
                covered.
        """
        merged = merge_lines(lines)
        with self._lock:
            if reservation_id in self._reservations:
                return
            for key, qty, idx in merged:
                if self._available.get(key, 0) < qty:
                    raise StockError(line=idx, product_id=key.product_id, size=key.size)
            for key, qty, _ in merged:
                self._available[key] -= qty
            self._reservations[reservation_id] = RESERVED

    def commit(self, reservation_id: str, lines: List[StockLine]) -> None:
        with self._lock:
            if self._reservations.get(reservation_id) != RESERVED:
                return
            for key, qty, _ in merge_lines(lines):
                self._sales[key] += qty
            self._reservations[reservation_id] = COMMITTED

    def release(self, reservation_id: str, lines: List[StockLine]) -> None:
        """Give the units back; an unknown id is recorded as released so a
        reserve arriving later for it is a no-op."""
        with self._lock:
            state = self._reservations.get(reservation_id)
            if state is None:
                self._reservations[reservation_id] = RELEASED
                return
            if state != RESERVED:
                return
            for key, qty, _ in merge_lines(lines):
                self._available[key] = self._available.get(key, 0) + qty
            self._reservations[reservation_id] = RELEASED
