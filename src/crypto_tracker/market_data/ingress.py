"""Bounded FIFO between the socket receive path and the update dispatcher."""

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, Optional

from crypto_tracker.market_data.models import IngressMessage
from crypto_tracker.metrics import StreamMetrics

DEFAULT_CAPACITY = 100


class IngressBuffer:
    """
    Fixed-capacity FIFO that favors recency: when full, the oldest entry is
    evicted to admit the new one. The producer is never blocked.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, metrics: Optional[StreamMetrics] = None) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._items: Deque[IngressMessage] = deque()
        self._lock = Lock()
        self._dropped = 0
        self._metrics = metrics

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def push(self, message: IngressMessage) -> bool:
        """Append ``message``; returns True when an older entry had to be evicted."""
        with self._lock:
            evicted = len(self._items) >= self._capacity
            if evicted:
                self._items.popleft()
                self._dropped += 1
            self._items.append(message)

        if evicted and self._metrics:
            self._metrics.record_dropped_tick()
        return evicted

    def pop(self) -> Optional[IngressMessage]:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
