"""Shared fixtures and fakes for the market data tests."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Iterable, List, Optional
from unittest.mock import MagicMock

import pytest

from crypto_tracker.connection.rest_client import BinanceRESTClient
from crypto_tracker.market_data.models import SymbolPair


def tick_frame(symbol: str, last_price: str) -> str:
    """A combined-stream miniTicker frame as Binance sends it."""
    return json.dumps(
        {
            "stream": f"{symbol.lower()}@miniTicker",
            "data": {"e": "24hrMiniTicker", "s": symbol, "c": last_price, "o": "1.0"},
        }
    )


class FakeWebSocket:
    """Scripted stand-in for a websockets client connection."""

    def __init__(self, messages: Iterable[Any] = (), *, hold_open: bool = False) -> None:
        self.messages = list(messages)
        self.hold_open = hold_open
        self.sent: List[dict] = []
        self.closed = False
        self._closed_event: Optional[asyncio.Event] = None

    def _event(self) -> asyncio.Event:
        if self._closed_event is None:
            self._closed_event = asyncio.Event()
            if self.closed:
                self._closed_event.set()
        return self._closed_event

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self._event().set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            if self.closed:
                return
            yield message
            await asyncio.sleep(0)
        if self.hold_open:
            await self._event().wait()


class _FakeConnection:
    def __init__(self, outcome: Any) -> None:
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, *exc_info) -> bool:
        if not isinstance(self._outcome, BaseException):
            await self._outcome.close()
        return False


class FakeConnector:
    """
    Replacement for ``websockets.asyncio.client.connect``. Each call consumes the
    next scripted socket or exception; once the script runs out every call
    fails with a refused connection.
    """

    def __init__(self, script: Iterable[Any] = ()) -> None:
        self.script = list(script)
        self.calls: List[tuple] = []

    def __call__(self, url: str, **kwargs: Any) -> _FakeConnection:
        self.calls.append((url, kwargs))
        outcome = self.script.pop(0) if self.script else OSError("connection refused")
        return _FakeConnection(outcome)


@pytest.fixture
def pairs() -> List[SymbolPair]:
    return [
        SymbolPair("BTCUSDT", "BTC", "USDT"),
        SymbolPair("ETHUSDT", "ETH", "USDT"),
        SymbolPair("ETHBTC", "ETH", "BTC"),
    ]


@pytest.fixture
def exchange_info() -> dict:
    return {
        "timezone": "UTC",
        "symbols": [
            {"symbol": "BTCUSDT", "status": "TRADING", "baseAsset": "BTC", "quoteAsset": "USDT"},
            {"symbol": "ETHUSDT", "status": "TRADING", "baseAsset": "ETH", "quoteAsset": "USDT"},
            {"symbol": "ETHBTC", "status": "TRADING", "baseAsset": "ETH", "quoteAsset": "BTC"},
        ],
    }


@pytest.fixture
def rest_client(exchange_info) -> MagicMock:
    """REST client double answering every open-price request with 100."""
    client = MagicMock(spec=BinanceRESTClient)
    client.get_exchange_info.return_value = exchange_info
    client.get_trading_day_tickers.side_effect = lambda symbols: [
        {"symbol": symbol, "openPrice": "100.00000000"} for symbol in symbols
    ]
    return client
