"""Lightweight in-memory counters for operational visibility."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from threading import Lock
from typing import Deque, Dict, Optional


class StreamMetrics:
    """Thread-safe, low-overhead counters for the streaming pipeline."""

    def __init__(self, max_errors: int = 50) -> None:
        self._lock = Lock()
        self._recent_errors: Deque[Dict[str, str]] = deque(maxlen=max_errors)
        self.ticks_received = 0
        self.ticks_dropped = 0
        self.ticks_ignored = 0
        self.updates_emitted = 0
        self.baseline_requests = 0
        self.baseline_retries = 0
        self.reconnect_attempts = 0
        self.transport_errors = 0
        self.last_tick_symbol: Optional[str] = None

    def record_tick(self, symbol: str) -> None:
        """Count one tick accepted into the ingress buffer."""

        with self._lock:
            self.ticks_received += 1
            self.last_tick_symbol = symbol

    def record_dropped_tick(self) -> None:
        """Count a buffered tick evicted to make room for a newer one."""

        with self._lock:
            self.ticks_dropped += 1

    def record_ignored_tick(self) -> None:
        """Count a dequeued tick discarded because its symbol has no baseline."""

        with self._lock:
            self.ticks_ignored += 1

    def record_update(self, rows: int) -> None:
        """Track one dispatched tick and the number of rows it touched."""

        with self._lock:
            self.updates_emitted += max(rows, 0)

    def record_baseline_request(self, retry: bool = False) -> None:
        with self._lock:
            self.baseline_requests += 1
            if retry:
                self.baseline_retries += 1

    def record_reconnect_attempt(self) -> None:
        with self._lock:
            self.reconnect_attempts += 1

    def record_error(self, message: str) -> None:
        """Store a transport-level error message in the rolling buffer."""

        with self._lock:
            self.transport_errors += 1
            self._recent_errors.appendleft(self._format_error(message))

    def snapshot(self) -> Dict[str, object]:
        """Return a read-only snapshot of current counters."""

        with self._lock:
            return {
                "ticks_received": self.ticks_received,
                "ticks_dropped": self.ticks_dropped,
                "ticks_ignored": self.ticks_ignored,
                "updates_emitted": self.updates_emitted,
                "baseline_requests": self.baseline_requests,
                "baseline_retries": self.baseline_retries,
                "reconnect_attempts": self.reconnect_attempts,
                "transport_errors": self.transport_errors,
                "last_tick_symbol": self.last_tick_symbol,
                "recent_errors": list(self._recent_errors),
            }

    @staticmethod
    def _format_error(message: str) -> Dict[str, str]:
        return {
            "at": datetime.now(timezone.utc).isoformat(),
            "message": message,
        }


__all__ = ["StreamMetrics"]
