"""Tracked rows and their price state."""

from __future__ import annotations

import uuid
from threading import Lock
from typing import Dict, List, Optional

from crypto_tracker.market_data.exceptions import RowNotFoundError
from crypto_tracker.market_data.models import PriceUpdate, SymbolPair, TrackedPair


class Watchlist:
    """
    Ordered, lock-guarded collection of :class:`TrackedPair` rows. Several rows
    may be bound to the same symbol; updates fan out to all of them.
    """

    def __init__(self) -> None:
        self._rows: Dict[str, TrackedPair] = {}
        self._lock = Lock()

    def add(self, pair: SymbolPair, baseline: Optional[float] = None) -> TrackedPair:
        row = TrackedPair(row_id=uuid.uuid4().hex, pair=pair, baseline=baseline)
        with self._lock:
            self._rows[row.row_id] = row
        return row

    def remove(self, row_id: str) -> TrackedPair:
        with self._lock:
            row = self._rows.pop(row_id, None)
        if row is None:
            raise RowNotFoundError(row_id)
        return row

    def get(self, row_id: str) -> TrackedPair:
        with self._lock:
            row = self._rows.get(row_id)
        if row is None:
            raise RowNotFoundError(row_id)
        return row

    def rows(self) -> List[TrackedPair]:
        with self._lock:
            return list(self._rows.values())

    def rows_for(self, symbol: str) -> List[TrackedPair]:
        with self._lock:
            return [row for row in self._rows.values() if row.symbol == symbol]

    def symbols(self) -> List[str]:
        """Distinct symbols in row order."""
        with self._lock:
            return list(dict.fromkeys(row.symbol for row in self._rows.values()))

    def references(self, symbol: str) -> int:
        with self._lock:
            return sum(1 for row in self._rows.values() if row.symbol == symbol)

    def set_baseline(self, symbol: str, baseline: float) -> List[TrackedPair]:
        with self._lock:
            rows = [row for row in self._rows.values() if row.symbol == symbol]
            for row in rows:
                row.baseline = baseline
        return rows

    def apply(self, update: PriceUpdate) -> List[TrackedPair]:
        """Writes one computed tick into every row bound to its symbol."""
        with self._lock:
            rows = [row for row in self._rows.values() if row.symbol == update.symbol]
            for row in rows:
                row.price = update.price
                row.change = update.change
                row.change_percent = update.change_percent
        return rows

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
