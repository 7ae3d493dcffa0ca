# src/crypto_tracker/market_data/stream.py

import asyncio
import json
import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from crypto_tracker.logging_config import structured_log_extra
from crypto_tracker.market_data.ingress import IngressBuffer
from crypto_tracker.market_data.models import ConnectionState, ConnectionStatus, IngressMessage
from crypto_tracker.market_data.retry import RetryCounter
from crypto_tracker.market_data.subscriptions import SUBSCRIBE, UNSUBSCRIBE, SubscriptionRegistry
from crypto_tracker.metrics import StreamMetrics

logger = logging.getLogger(__name__)

BINANCE_STREAM_URL = "wss://stream.binance.com:443/stream"


def parse_tick(payload: Dict[str, Any]) -> Optional[IngressMessage]:
    """Turns a ``data`` object (``{"s": symbol, "c": last price, ...}``) into a message."""
    symbol = payload.get("s")
    if not isinstance(symbol, str) or not symbol:
        return None
    try:
        last_price = float(payload.get("c"))
    except (TypeError, ValueError):
        return None
    if not math.isfinite(last_price):
        return None
    return IngressMessage(symbol=symbol, last_price=last_price)


class StreamConnection:
    """
    Owns the push-feed socket. Inbound ticks only ever go to the ingress buffer;
    subscriptions are replayed from the registry every time the socket opens.

    States: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED, or
    CLOSING_MANUALLY once close() is called, which is terminal for the instance.
    Opening a socket does not reset the reconnect budget; only connect() does,
    so a feed that keeps opening and dropping still stops after the cap.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        buffer: IngressBuffer,
        *,
        url: str = BINANCE_STREAM_URL,
        reconnect_delay: float = 30.0,
        max_reconnect_attempts: int = 10,
        ping_interval: Optional[float] = 20.0,
        on_open: Optional[Callable[[], None]] = None,
        connector: Callable[..., Any] = connect,
        metrics: Optional[StreamMetrics] = None,
    ):
        self._url = url
        self._registry = registry
        self._buffer = buffer
        self._reconnect_delay = reconnect_delay
        self._reconnect_counter = RetryCounter(max_reconnect_attempts)
        self._ping_interval = ping_interval
        self._on_open = on_open
        self._connector = connector
        self._metrics = metrics

        self._state = ConnectionState.DISCONNECTED
        self._manual_close = False
        self._websocket: Any = None
        self._listener: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """Returns True if the socket is open and subscriptions were replayed."""
        return self._state is ConnectionState.CONNECTED and self._websocket is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_counter.value

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            subscribed_symbols=self._registry.snapshot(),
            reconnect_attempts=self._reconnect_counter.value,
            buffered_messages=len(self._buffer),
            dropped_messages=self._buffer.dropped,
        )

    async def connect(self) -> bool:
        """
        Opens the connection when DISCONNECTED; any other state makes this a
        no-op so two sockets can never be live at once. An explicit connect
        also re-arms automatic reconnection after it was exhausted.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            logger.debug(f"Connect ignored; stream is {self._state.value}.")
            return False

        self._cancel_reconnect()
        self._reconnect_counter.reset()
        return self._open()

    def _open(self) -> bool:
        if self._state is not ConnectionState.DISCONNECTED or self._manual_close:
            return False

        self._state = ConnectionState.CONNECTING
        self._listener = asyncio.get_running_loop().create_task(self._listen())
        return True

    async def _listen(self):
        """Runs one socket from open to close."""
        try:
            async with self._connector(self._url, ping_interval=self._ping_interval) as websocket:
                self._websocket = websocket
                if not await self._handle_open(websocket):
                    return
                async for message in websocket:
                    self._handle_message(message)
        except ConnectionClosed as e:
            if not self._manual_close:
                logger.warning(
                    f"WebSocket connection closed unexpectedly: {e}",
                    extra=structured_log_extra(event="stream_closed"),
                )
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.error(
                f"WebSocket error: {e}",
                extra=structured_log_extra(event="stream_error"),
            )
            if self._metrics:
                self._metrics.record_error(f"websocket error: {e}")
        finally:
            self._websocket = None
            self._handle_close()

    async def _handle_open(self, websocket: Any) -> bool:
        if self._manual_close:
            # close() was requested while the handshake was in flight
            await websocket.close()
            return False

        self._state = ConnectionState.CONNECTED
        self._registry.clear_pending()
        logger.info("WebSocket connected.", extra=structured_log_extra(event="stream_connected"))

        await self._send(self._registry.build_frame(SUBSCRIBE, self._registry.snapshot()))

        if self._on_open:
            try:
                self._on_open()
            except Exception:  # noqa: BLE001
                logger.exception("Stream open hook failed")
        return True

    def _handle_message(self, raw: Any) -> None:
        """
        Parses one inbound frame. Ticks are pushed into the ingress buffer;
        nothing else happens on the receive path.
        """
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.debug("Ignoring malformed WebSocket frame.")
            return

        if not isinstance(data, dict):
            return

        payload = data.get("data")
        if isinstance(payload, dict):
            message = parse_tick(payload)
            if message is None:
                logger.debug(f"Ignoring data frame without symbol/price: {data.get('stream')}")
                return
            self._buffer.push(message)
            if self._metrics:
                self._metrics.record_tick(message.symbol)
            return

        if "id" in data:
            self._handle_response(data)

    def _handle_response(self, data: Dict[str, Any]) -> None:
        request_id = data.get("id")
        request = self._registry.acknowledge(request_id)
        method, params = request if request else ("request", [])
        error = data.get("error")

        if error:
            reason = error.get("msg") if isinstance(error, dict) else error
            logger.error(
                f"{method} {request_id} for {', '.join(params) or 'unknown streams'} failed: {reason}",
                extra=structured_log_extra(event="stream_request_failed", request_id=request_id),
            )
        else:
            logger.debug(f"{method} {request_id} acknowledged.")

    def _handle_close(self) -> None:
        was_manual = self._manual_close
        self._state = ConnectionState.CLOSING_MANUALLY if was_manual else ConnectionState.DISCONNECTED
        logger.info("WebSocket closed.", extra=structured_log_extra(event="stream_disconnected", manual=was_manual))

        if not was_manual:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._reconnect_counter.try_increment():
            logger.warning(
                f"Reconnect attempts exhausted after {self._reconnect_counter.maximum}; staying disconnected.",
                extra=structured_log_extra(event="stream_reconnect_exhausted"),
            )
            return

        attempt = self._reconnect_counter.value
        if self._metrics:
            self._metrics.record_reconnect_attempt()
        logger.info(
            f"Reconnecting in {self._reconnect_delay}s "
            f"(attempt {attempt}/{self._reconnect_counter.maximum})...",
            extra=structured_log_extra(event="stream_reconnect_scheduled", attempt=attempt),
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        self._open()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

    async def _send(self, frame: Optional[Dict[str, Any]]) -> bool:
        if frame is None or self._websocket is None:
            return False

        try:
            await self._websocket.send(json.dumps(frame))
        except (ConnectionClosed, OSError) as e:
            logger.error(
                f"Failed to send {frame['method']}: {e}",
                extra=structured_log_extra(event="stream_send_failed", request_id=frame["id"]),
            )
            return False

        logger.info(f"{frame['method']} {', '.join(frame['params'])}")
        return True

    async def subscribe(self, symbols: Iterable[str]) -> List[str]:
        """
        Registers symbols and, when connected, sends one SUBSCRIBE frame for the
        ones that were new. While disconnected the next open replays them.
        """
        added = self._registry.add(*symbols)
        if added and self.is_connected:
            await self._send(self._registry.build_frame(SUBSCRIBE, added))
        return added

    async def unsubscribe(self, symbols: Iterable[str]) -> List[str]:
        removed = self._registry.remove(*symbols)
        if removed and self.is_connected:
            await self._send(self._registry.build_frame(UNSUBSCRIBE, removed))
        return removed

    async def close(self) -> None:
        """
        Closes the socket on operator request. The manual flag is raised before
        anything else so the close event does not trigger a reconnect.
        """
        self._manual_close = True
        self._state = ConnectionState.CLOSING_MANUALLY
        self._cancel_reconnect()

        websocket = self._websocket
        if websocket is not None:
            try:
                await websocket.close()
            except (OSError, WebSocketException) as e:
                logger.warning(f"Error while closing WebSocket: {e}")

        listener = self._listener
        if listener is not None and not listener.done():
            if websocket is None:
                listener.cancel()
            await asyncio.gather(listener, return_exceptions=True)

        logger.info("WebSocket closed by request.", extra=structured_log_extra(event="stream_closed_manually"))

    async def join(self) -> None:
        """Waits until neither a socket nor a pending reconnect is active."""
        while True:
            tasks = [
                task
                for task in (self._listener, self._reconnect_task)
                if task is not None and not task.done()
            ]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)
