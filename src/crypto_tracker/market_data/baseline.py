# src/crypto_tracker/market_data/baseline.py

import asyncio
import logging
import math
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from crypto_tracker.connection.exceptions import BinanceAPIError
from crypto_tracker.connection.rest_client import BinanceRESTClient
from crypto_tracker.logging_config import structured_log_extra
from crypto_tracker.market_data.retry import RetryCounter
from crypto_tracker.metrics import StreamMetrics

logger = logging.getLogger(__name__)

BaselineCallback = Callable[[Dict[str, float]], None]


class BaselineStore:
    """Lock-guarded symbol -> open price map shared by the fetcher and the dispatcher."""

    def __init__(self) -> None:
        self._prices: Dict[str, float] = {}
        self._lock = Lock()

    def get(self, symbol: str) -> Optional[float]:
        with self._lock:
            return self._prices.get(symbol)

    def set(self, symbol: str, price: float) -> None:
        if price == 0:
            raise ValueError(f"Refusing to store a zero baseline for {symbol}")
        with self._lock:
            self._prices[symbol] = price

    def update(self, prices: Dict[str, float]) -> None:
        for symbol, price in prices.items():
            self.set(symbol, price)

    def discard(self, symbol: str) -> None:
        with self._lock:
            self._prices.pop(symbol, None)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._prices)

    def __contains__(self, symbol: object) -> bool:
        with self._lock:
            return symbol in self._prices

    def __len__(self) -> int:
        with self._lock:
            return len(self._prices)


def _dedupe(symbols: Iterable[str]) -> List[str]:
    """Drops repeated symbols, keeping first-seen order."""
    return list(dict.fromkeys(symbols))


def _parse_open_price(raw: Any) -> float:
    """Unparseable or non-finite prices count as zero so they get retried."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


class BaselineFetcher:
    """
    Fetches the trading-day open price used as the reference for change figures.

    Symbols that come back with a zero open price are retried after a fixed
    delay, restricted to the failed subset. The retry counter counts waves for
    the whole fetcher, not attempts per symbol.

    When ``is_tracked`` is given, prices for symbols it rejects are neither
    stored nor retried, so a symbol removed while a wave is pending is dropped.
    """

    def __init__(
        self,
        client: BinanceRESTClient,
        store: BaselineStore,
        *,
        retry_delay: float = 10.0,
        max_retries: int = 10,
        max_symbols_per_request: int = 100,
        on_baselines: Optional[BaselineCallback] = None,
        metrics: Optional[StreamMetrics] = None,
        is_tracked: Optional[Callable[[str], bool]] = None,
    ) -> None:
        if max_symbols_per_request <= 0:
            raise ValueError("max_symbols_per_request must be positive")
        self._client = client
        self._store = store
        self._retry_delay = retry_delay
        self._retry_counter = RetryCounter(max_retries)
        self._batch_size = max_symbols_per_request
        self._on_baselines = on_baselines
        self._metrics = metrics
        self._is_tracked = is_tracked
        self._pending: Set[asyncio.Task] = set()

    @property
    def retry_counter(self) -> RetryCounter:
        return self._retry_counter

    @property
    def pending_retries(self) -> int:
        return sum(1 for task in self._pending if not task.done())

    async def fetch(self, symbols: Iterable[str]) -> Dict[str, float]:
        """
        Fetches open prices for the distinct symbols in ``symbols`` and stores
        the non-zero ones. Returns the prices stored by this call.
        """
        return await self._fetch(symbols, retry=False)

    async def _fetch(self, symbols: Iterable[str], retry: bool) -> Dict[str, float]:
        unique = _dedupe(symbols)
        if not unique:
            return {}

        fetched: Dict[str, float] = {}
        zero_symbols: List[str] = []

        for start in range(0, len(unique), self._batch_size):
            batch = unique[start:start + self._batch_size]
            if self._metrics:
                self._metrics.record_baseline_request(retry=retry)

            try:
                payload = await asyncio.to_thread(self._client.get_trading_day_tickers, batch)
            except BinanceAPIError as e:
                logger.error(
                    f"Failed to fetch open prices: {e}",
                    extra=structured_log_extra(event="baseline_fetch_failed", symbols=batch),
                )
                if self._metrics:
                    self._metrics.record_error(f"baseline fetch failed: {e}")
                # zeros from earlier batches still get their retry wave
                if zero_symbols:
                    self._schedule_retry(zero_symbols)
                self._notify(fetched)
                return fetched

            self._apply_payload(payload, batch, fetched, zero_symbols)

        if zero_symbols:
            self._schedule_retry(zero_symbols)
        else:
            self._retry_counter.reset()

        self._notify(fetched)
        logger.info(
            f"Open prices updated for {len(fetched)} of {len(unique)} symbols.",
            extra=structured_log_extra(event="baseline_updated", retry=retry),
        )
        return fetched

    def _apply_payload(
        self,
        payload: List[Any],
        batch: List[str],
        fetched: Dict[str, float],
        zero_symbols: List[str],
    ) -> None:
        requested = set(batch)
        for item in payload:
            if not isinstance(item, dict):
                continue
            symbol = item.get("symbol")
            if not isinstance(symbol, str) or symbol not in requested:
                continue
            if not self._tracked(symbol):
                logger.debug(f"Ignoring open price for untracked symbol {symbol}")
                continue

            open_price = _parse_open_price(item.get("openPrice"))
            if open_price == 0:
                zero_symbols.append(symbol)
                logger.warning(
                    f"Open price is 0 for {symbol}",
                    extra=structured_log_extra(event="baseline_zero", symbol=symbol),
                )
                continue

            self._store.set(symbol, open_price)
            fetched[symbol] = open_price

    def _schedule_retry(self, symbols: List[str]) -> None:
        if not self._retry_counter.try_increment():
            logger.warning(
                f"Giving up on open prices for {', '.join(symbols)} after "
                f"{self._retry_counter.maximum} retries.",
                extra=structured_log_extra(event="baseline_retry_exhausted", symbols=symbols),
            )
            return

        attempt = self._retry_counter.value
        logger.info(
            f"Retrying open prices for {len(symbols)} symbols in {self._retry_delay}s.",
            extra=structured_log_extra(event="baseline_retry_scheduled", attempt=attempt),
        )
        task = asyncio.get_running_loop().create_task(self._retry_later(symbols))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _tracked(self, symbol: str) -> bool:
        return self._is_tracked is None or self._is_tracked(symbol)

    async def _retry_later(self, symbols: List[str]) -> None:
        await asyncio.sleep(self._retry_delay)
        symbols = [symbol for symbol in symbols if self._tracked(symbol)]
        if not symbols:
            logger.debug("Retry wave skipped; no retried symbol is tracked any more.")
            return
        await self._fetch(symbols, retry=True)

    def _notify(self, fetched: Dict[str, float]) -> None:
        if not fetched or not self._on_baselines:
            return
        try:
            self._on_baselines(dict(fetched))
        except Exception:  # noqa: BLE001
            logger.exception("Baseline callback failed")

    def cancel_pending(self) -> None:
        """Cancels every scheduled retry wave."""
        for task in list(self._pending):
            task.cancel()

    async def join(self) -> None:
        """Waits until no retry wave is scheduled or running."""
        while True:
            pending = [task for task in self._pending if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
