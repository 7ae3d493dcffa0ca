"""Bounded retry counter shared by one class of retried operation."""

from __future__ import annotations

from threading import Lock


class RetryCounter:
    """
    Counts retry attempts up to a fixed maximum.

    The value never goes negative and never exceeds ``maximum``; callers reset
    it once the guarded operation succeeds.
    """

    def __init__(self, maximum: int) -> None:
        if maximum < 0:
            raise ValueError("maximum must be >= 0")
        self._maximum = maximum
        self._value = 0
        self._lock = Lock()

    @property
    def maximum(self) -> int:
        return self._maximum

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._value >= self._maximum

    def try_increment(self) -> bool:
        """Consume one attempt. Returns False, leaving the value untouched, once the cap is hit."""
        with self._lock:
            if self._value >= self._maximum:
                return False
            self._value += 1
            return True

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    def __repr__(self) -> str:
        return f"RetryCounter({self.value}/{self._maximum})"
