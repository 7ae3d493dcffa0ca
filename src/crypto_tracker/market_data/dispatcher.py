"""Throttled consumer turning buffered ticks into row updates."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, List, Optional, Tuple

from crypto_tracker.market_data.baseline import BaselineStore
from crypto_tracker.market_data.ingress import IngressBuffer
from crypto_tracker.market_data.models import IngressMessage, PriceUpdate, TrackedPair
from crypto_tracker.market_data.watchlist import Watchlist
from crypto_tracker.metrics import StreamMetrics

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[List[TrackedPair]], None]


def compute_change(price: float, baseline: float) -> Tuple[float, float]:
    """Returns ``(change, change_percent)`` of ``price`` against a non-zero baseline."""
    if baseline == 0:
        raise ValueError("baseline must be non-zero")
    change = price - baseline
    return change, change / baseline * 100


class UpdateDispatcher:
    """
    Drains at most one buffered tick per ``tick_interval`` seconds, which caps
    how often the presentation callback fires regardless of the feed rate.
    """

    def __init__(
        self,
        buffer: IngressBuffer,
        baselines: BaselineStore,
        watchlist: Watchlist,
        on_update: Optional[UpdateCallback] = None,
        *,
        tick_interval: float = 0.1,
        cancel_event: Optional[threading.Event] = None,
        metrics: Optional[StreamMetrics] = None,
    ) -> None:
        self._buffer = buffer
        self._baselines = baselines
        self._watchlist = watchlist
        self._on_update = on_update
        self._tick_interval = tick_interval
        self._cancel_event = cancel_event or threading.Event()
        self._metrics = metrics
        self._task: Optional[asyncio.Task] = None

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def ensure_running(self) -> bool:
        """Starts the loop on the running event loop unless it is already running."""
        if self.is_running or self._cancel_event.is_set():
            return False
        self._task = asyncio.get_running_loop().create_task(self.run())
        return True

    async def run(self) -> None:
        logger.info("Update dispatcher started.")
        while not self._cancel_event.is_set():
            message = self._buffer.pop()
            if message is not None:
                self.process(message)
            await asyncio.sleep(self._tick_interval)
        logger.info("Update dispatcher stopped.")

    def process(self, message: IngressMessage) -> List[TrackedPair]:
        """
        Applies one tick to every row bound to its symbol and hands the updated
        rows to the callback in a single call. Ticks without a baseline are dropped.
        """
        baseline = self._baselines.get(message.symbol)
        if not baseline:
            if self._metrics:
                self._metrics.record_ignored_tick()
            return []

        change, change_percent = compute_change(message.last_price, baseline)
        rows = self._watchlist.apply(
            PriceUpdate(message.symbol, message.last_price, change, change_percent)
        )
        if not rows:
            return []

        if self._metrics:
            self._metrics.record_update(len(rows))

        if self._on_update:
            try:
                self._on_update(rows)
            except Exception:  # noqa: BLE001
                logger.exception("Update callback failed for %s", message.symbol)
        return rows

    async def stop(self) -> None:
        """Asserts the cancellation signal and waits for the loop to notice it."""
        self._cancel_event.set()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
