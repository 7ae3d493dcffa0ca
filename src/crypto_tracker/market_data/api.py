# src/crypto_tracker/market_data/api.py

import asyncio
import concurrent.futures
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Coroutine, Dict, Iterable, List, Optional, Set

from crypto_tracker.config import AppConfig
from crypto_tracker.connection.rest_client import BinanceRESTClient
from crypto_tracker.logging_config import structured_log_extra
from crypto_tracker.market_data.baseline import BaselineCallback, BaselineFetcher, BaselineStore
from crypto_tracker.market_data.catalog import DEFAULT_SEARCH_LIMIT, load_symbol_pairs, search_pairs
from crypto_tracker.market_data.dispatcher import UpdateCallback, UpdateDispatcher
from crypto_tracker.market_data.exceptions import PairNotFoundError, TrackerNotRunningError
from crypto_tracker.market_data.ingress import IngressBuffer
from crypto_tracker.market_data.models import ConnectionStatus, SymbolPair, TrackedPair
from crypto_tracker.market_data.stream import StreamConnection
from crypto_tracker.market_data.subscriptions import SubscriptionRegistry
from crypto_tracker.market_data.watchlist import Watchlist
from crypto_tracker.metrics import StreamMetrics

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def seconds_until_next_utc_day(now: datetime, offset_seconds: float = 0) -> float:
    """Seconds from ``now`` until the next UTC midnight plus ``offset_seconds``."""
    now_utc = now.astimezone(timezone.utc)
    next_midnight = (now_utc + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (next_midnight + timedelta(seconds=offset_seconds) - now_utc).total_seconds()


class MarketDataAPI:
    """
    The main public interface for the price tracker.

    ``start()`` runs the whole pipeline on a private event loop in a daemon
    thread. Public methods are safe to call from any other thread; callbacks
    (``on_update``, ``on_baselines``) run on the pipeline thread, so a UI must
    marshal them onto its own thread.
    """
    def __init__(
        self,
        config: AppConfig,
        on_update: Optional[UpdateCallback] = None,
        *,
        on_baselines: Optional[BaselineCallback] = None,
        rest_client: Optional[BinanceRESTClient] = None,
        connector: Optional[Callable[..., Any]] = None,
        metrics: Optional[StreamMetrics] = None,
        call_timeout: float = 30.0,
    ):
        self._config = config
        self._rest_client = rest_client or BinanceRESTClient(
            api_url=config.endpoints.rest_base_url,
            request_timeout=config.endpoints.request_timeout_seconds,
        )
        self._on_baselines = on_baselines
        self._call_timeout = call_timeout
        self.metrics = metrics or StreamMetrics()

        self._pairs: Dict[str, SymbolPair] = {}
        self._pairs_lock = threading.Lock()

        self.watchlist = Watchlist()
        self.baselines = BaselineStore()
        self.registry = SubscriptionRegistry(stream_suffix=config.stream.stream_suffix)
        self.buffer = IngressBuffer(config.dispatcher.buffer_capacity, metrics=self.metrics)

        self._cancel_event = threading.Event()
        self.dispatcher = UpdateDispatcher(
            self.buffer,
            self.baselines,
            self.watchlist,
            on_update,
            tick_interval=config.dispatcher.tick_interval_ms / 1000,
            cancel_event=self._cancel_event,
            metrics=self.metrics,
        )
        self.fetcher = BaselineFetcher(
            self._rest_client,
            self.baselines,
            retry_delay=config.baseline.retry_delay_seconds,
            max_retries=config.baseline.max_retries,
            max_symbols_per_request=config.baseline.max_symbols_per_request,
            on_baselines=self._handle_baselines,
            metrics=self.metrics,
            is_tracked=lambda symbol: self.watchlist.references(symbol) > 0,
        )

        stream_options: Dict[str, Any] = {}
        if connector is not None:
            stream_options["connector"] = connector
        self.stream = StreamConnection(
            self.registry,
            self.buffer,
            url=config.endpoints.stream_url,
            reconnect_delay=config.stream.reconnect_delay_seconds,
            max_reconnect_attempts=config.stream.max_reconnect_attempts,
            ping_interval=config.stream.ping_interval_seconds,
            on_open=self.dispatcher.ensure_running,
            metrics=self.metrics,
            **stream_options,
        )

        self._running = False
        self._stopped = False
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._bootstrap_future: Optional[concurrent.futures.Future] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    # -- lifecycle -------------------------------------------------------------

    def start(self, symbols: Optional[Iterable[str]] = None) -> None:
        """
        Starts the pipeline thread and schedules the bootstrap: load the catalog,
        create rows for ``symbols`` (default: the configured watchlist), fetch
        their baselines, then open the push feed.

        An instance runs once: after stop() the socket and HTTP session are
        gone, so starting it again raises TrackerNotRunningError.
        """
        if self._stopped:
            raise TrackerNotRunningError("MarketDataAPI was stopped and cannot be restarted; create a new instance.")
        if self._running:
            logger.warning("MarketDataAPI is already running.")
            return

        initial = list(symbols) if symbols is not None else list(self._config.watchlist)
        self._running = True
        self._cancel_event.clear()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run, args=(self._loop,), name="crypto-tracker", daemon=True
        )
        self._thread.start()
        self._bootstrap_future = asyncio.run_coroutine_threadsafe(self.bootstrap(initial), self._loop)
        logger.info("MarketDataAPI started.", extra=structured_log_extra(event="tracker_started"))

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """
        Blocks until the bootstrap finished. Returns False on timeout or when
        stop() cancelled the bootstrap; any other bootstrap error is re-raised.
        """
        if self._bootstrap_future is None:
            return False
        try:
            self._bootstrap_future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            return False
        except concurrent.futures.CancelledError:
            logger.info("Bootstrap cancelled before it finished.")
            return False
        return True

    def stop(self) -> None:
        """
        Stops the dispatcher, pending retries and refresh timers, closes the
        socket, then releases the HTTP session and the loop thread.
        """
        if not self._running:
            return
        self._running = False
        self._stopped = True
        # the dispatcher must see cancellation before timers and sockets go away
        self._cancel_event.set()

        loop = self._loop
        if self._bootstrap_future is not None and not self._bootstrap_future.done():
            self._bootstrap_future.cancel()

        if loop is not None and not loop.is_closed():
            future = asyncio.run_coroutine_threadsafe(self.aclose(), loop)
            try:
                future.result(timeout=self._call_timeout)
            except Exception as exc:  # pragma: no cover - defensive logging
                logger.error("Error shutting down market data pipeline: %s", exc)
        self._rest_client.close()

        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(loop.stop)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("MarketDataAPI shutdown complete.", extra=structured_log_extra(event="tracker_stopped"))

    def _run(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_default_executor())
            loop.close()

    async def bootstrap(self, symbols: Iterable[str]) -> None:
        await self._refresh_catalog()

        for symbol in symbols:
            try:
                self.watchlist.add(self._resolve_pair(symbol))
            except PairNotFoundError as exc:
                logger.warning(f"Skipping watchlist entry: {exc}")

        tracked = self.watchlist.symbols()
        if tracked:
            await self.fetcher.fetch(tracked)
        await self.stream.subscribe(tracked)
        await self.stream.connect()

        schedule = self._config.schedule
        self._spawn(
            self._periodic(
                "catalog",
                schedule.catalog_refresh_seconds,
                schedule.catalog_refresh_seconds,
                self._refresh_catalog,
            )
        )
        self._spawn(
            self._periodic(
                "baseline",
                seconds_until_next_utc_day(
                    datetime.now(timezone.utc), schedule.baseline_refresh_offset_seconds
                ),
                SECONDS_PER_DAY,
                self._refresh_baselines,
            )
        )

    async def aclose(self) -> None:
        """Tears the pipeline down on the running loop."""
        self._cancel_event.set()
        await self.dispatcher.stop()
        self.fetcher.cancel_pending()
        for task in list(self._background):
            task.cancel()
        await self.stream.close()
        await asyncio.gather(*self._background, return_exceptions=True)
        await self.fetcher.join()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _periodic(
        self,
        name: str,
        first_delay: float,
        interval: float,
        action: Callable[[], Awaitable[Any]],
    ) -> None:
        delay = first_delay
        while True:
            await asyncio.sleep(delay)
            logger.info(f"Running scheduled {name} refresh.", extra=structured_log_extra(event=f"{name}_refresh"))
            try:
                await action()
            except Exception:  # pragma: no cover - defensive logging
                logger.exception("Scheduled %s refresh failed", name)
            delay = interval

    # -- control plane (pipeline thread) ----------------------------------------

    def _resolve_pair(self, symbol: str) -> SymbolPair:
        normalized = symbol.strip().upper()
        with self._pairs_lock:
            pair = self._pairs.get(normalized)
            catalog_loaded = bool(self._pairs)

        if pair is not None:
            return pair
        if catalog_loaded:
            raise PairNotFoundError(normalized)

        logger.warning(
            f"Symbol catalog unavailable; tracking {normalized} without asset metadata.",
            extra=structured_log_extra(event="catalog_unavailable", symbol=normalized),
        )
        return SymbolPair(symbol=normalized, base_asset="", quote_asset="")

    async def _refresh_catalog(self) -> int:
        pairs = await asyncio.to_thread(load_symbol_pairs, self._rest_client)
        if not pairs:
            logger.warning(f"Catalog refresh returned no pairs; keeping {len(self.get_pairs())} cached pairs.")
            return 0

        with self._pairs_lock:
            for pair in pairs:
                self._pairs[pair.symbol] = pair
            total = len(self._pairs)
        logger.info(f"Symbol catalog refreshed. Contains {total} pairs.")
        return len(pairs)

    async def _refresh_baselines(self) -> Dict[str, float]:
        return await self.fetcher.fetch(self.watchlist.symbols())

    async def _add_symbol(self, symbol: str) -> TrackedPair:
        pair = self._resolve_pair(symbol)
        row = self.watchlist.add(pair, baseline=self.baselines.get(pair.symbol))

        if row.baseline is None:
            await self.fetcher.fetch([pair.symbol])
        await self.stream.subscribe([pair.symbol])
        logger.info(f"Tracking {pair.symbol}.", extra=structured_log_extra(event="row_added", symbol=pair.symbol))
        return row

    async def _remove_row(self, row_id: str) -> TrackedPair:
        row = self.watchlist.remove(row_id)
        if self.watchlist.references(row.symbol) == 0:
            await self.stream.unsubscribe([row.symbol])
            self.baselines.discard(row.symbol)
        logger.info(f"Stopped tracking row for {row.symbol}.", extra=structured_log_extra(event="row_removed", symbol=row.symbol))
        return row

    def _handle_baselines(self, prices: Dict[str, float]) -> None:
        for symbol, price in prices.items():
            self.watchlist.set_baseline(symbol, price)
        if self._on_baselines:
            self._on_baselines(prices)

    # -- thread-safe public calls ------------------------------------------------

    def _call(self, coro: Coroutine[Any, Any, Any]) -> Any:
        if not self._running or self._loop is None:
            coro.close()
            raise TrackerNotRunningError("MarketDataAPI is not running; call start() first.")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=self._call_timeout)

    def add_symbol(self, symbol: str) -> TrackedPair:
        """Adds a row for ``symbol``, fetching its baseline and subscribing if needed."""
        return self._call(self._add_symbol(symbol))

    def remove_row(self, row_id: str) -> TrackedPair:
        """Removes a row; the last row of a symbol also unsubscribes it."""
        return self._call(self._remove_row(row_id))

    def refresh_catalog(self) -> int:
        return self._call(self._refresh_catalog())

    def refresh_baselines(self) -> Dict[str, float]:
        return self._call(self._refresh_baselines())

    def reconnect(self) -> bool:
        """Explicitly re-opens the feed, e.g. after automatic reconnection gave up."""
        return self._call(self.stream.connect())

    def get_rows(self) -> List[TrackedPair]:
        return self.watchlist.rows()

    def get_pairs(self) -> List[SymbolPair]:
        with self._pairs_lock:
            return list(self._pairs.values())

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[SymbolPair]:
        return search_pairs(self.get_pairs(), query, limit)

    def get_baselines(self) -> Dict[str, float]:
        return self.baselines.snapshot()

    def get_connection_status(self) -> ConnectionStatus:
        return self.stream.status()
