# tests/test_stream.py

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from crypto_tracker.market_data.ingress import IngressBuffer
from crypto_tracker.market_data.models import ConnectionState
from crypto_tracker.market_data.stream import StreamConnection, parse_tick
from crypto_tracker.market_data.subscriptions import SUBSCRIBE, SubscriptionRegistry
from crypto_tracker.metrics import StreamMetrics

from conftest import FakeConnector, FakeWebSocket, tick_frame


def _stream(connector, registry=None, buffer=None, **kwargs):
    kwargs.setdefault("reconnect_delay", 0)
    return StreamConnection(
        registry if registry is not None else SubscriptionRegistry(),
        buffer if buffer is not None else IngressBuffer(capacity=10),
        url="wss://stream.test/stream",
        connector=connector,
        **kwargs,
    )


async def _wait_until(predicate, attempts=200):
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.005)
    return predicate()


def test_parse_tick_reads_symbol_and_last_price():
    message = parse_tick({"s": "BTCUSDT", "c": "43250.10000000"})

    assert message.symbol == "BTCUSDT"
    assert message.last_price == pytest.approx(43250.1)


@pytest.mark.parametrize(
    "payload",
    [{"c": "1.0"}, {"s": "BTCUSDT"}, {"s": "BTCUSDT", "c": "abc"}, {"s": "BTCUSDT", "c": "inf"}],
)
def test_parse_tick_rejects_incomplete_payloads(payload):
    assert parse_tick(payload) is None


def test_open_replays_registry_and_buffers_ticks():
    registry = SubscriptionRegistry()
    registry.add("BTCUSDT", "ETHUSDT")
    buffer = IngressBuffer(capacity=10)
    metrics = StreamMetrics()
    on_open = MagicMock()
    websocket = FakeWebSocket(
        [tick_frame("BTCUSDT", "110.0"), "not json", json.dumps({"result": None, "id": 1})]
    )
    connector = FakeConnector([websocket])
    stream = _stream(
        connector, registry, buffer, max_reconnect_attempts=0, on_open=on_open, metrics=metrics
    )

    async def scenario():
        await stream.connect()
        await stream.join()

    asyncio.run(scenario())

    assert connector.calls[0][0] == "wss://stream.test/stream"
    assert websocket.sent == [
        {"method": "SUBSCRIBE", "params": ["btcusdt@miniTicker", "ethusdt@miniTicker"], "id": 1}
    ]
    on_open.assert_called_once_with()
    message = buffer.pop()
    assert (message.symbol, message.last_price) == ("BTCUSDT", 110.0)
    assert buffer.pop() is None
    assert metrics.snapshot()["ticks_received"] == 1
    assert stream.state is ConnectionState.DISCONNECTED


def test_reconnect_attempts_are_capped():
    connector = FakeConnector()
    metrics = StreamMetrics()
    stream = _stream(connector, max_reconnect_attempts=10, metrics=metrics)

    async def scenario():
        await stream.connect()
        await stream.join()

    asyncio.run(scenario())

    # one initial attempt plus ten reconnects, all refused
    assert len(connector.calls) == 11
    assert stream.reconnect_attempts == 10
    assert metrics.snapshot()["reconnect_attempts"] == 10
    assert stream.state is ConnectionState.DISCONNECTED


def test_reconnect_cap_applies_when_sockets_open_then_drop():
    connector = FakeConnector([FakeWebSocket() for _ in range(20)])
    stream = _stream(connector, max_reconnect_attempts=10)

    async def scenario():
        await stream.connect()
        await stream.join()

    asyncio.run(scenario())

    # every socket opens and is closed by the remote side right away
    assert len(connector.calls) == 11
    assert stream.reconnect_attempts == 10
    assert stream.state is ConnectionState.DISCONNECTED


def test_successful_open_keeps_reconnect_attempts():
    websocket = FakeWebSocket(hold_open=True)
    connector = FakeConnector([OSError("refused"), OSError("refused"), websocket])
    stream = _stream(connector)

    async def scenario():
        await stream.connect()
        assert await _wait_until(lambda: stream.is_connected)
        attempts = stream.reconnect_attempts
        await stream.close()
        return attempts

    assert asyncio.run(scenario()) == 2
    assert len(connector.calls) == 3


def test_explicit_connect_rearms_exhausted_reconnects():
    websocket = FakeWebSocket(hold_open=True)
    connector = FakeConnector([OSError("refused"), OSError("refused"), websocket])
    stream = _stream(connector, max_reconnect_attempts=1)

    async def scenario():
        await stream.connect()
        await stream.join()
        exhausted = (stream.state, stream.reconnect_attempts)

        await stream.connect()
        assert await _wait_until(lambda: stream.is_connected)
        attempts = stream.reconnect_attempts
        await stream.close()
        return exhausted, attempts

    exhausted, attempts = asyncio.run(scenario())

    assert exhausted == (ConnectionState.DISCONNECTED, 1)
    assert attempts == 0
    assert len(connector.calls) == 3


def test_manual_close_does_not_reconnect():
    websocket = FakeWebSocket(hold_open=True)
    connector = FakeConnector([websocket])
    stream = _stream(connector)

    async def scenario():
        await stream.connect()
        assert await _wait_until(lambda: stream.is_connected)
        await stream.close()
        await stream.join()
        return await stream.connect()

    assert asyncio.run(scenario()) is False
    assert websocket.closed is True
    assert len(connector.calls) == 1
    assert stream.state is ConnectionState.CLOSING_MANUALLY
    assert stream.reconnect_attempts == 0


def test_connect_is_noop_while_connecting():
    connector = FakeConnector([FakeWebSocket(hold_open=True)])
    stream = _stream(connector)

    async def scenario():
        first = await stream.connect()
        second = await stream.connect()
        await stream.close()
        return first, second

    assert asyncio.run(scenario()) == (True, False)
    assert len(connector.calls) <= 1


def test_subscribe_sends_one_frame_for_new_symbols_only():
    websocket = FakeWebSocket(hold_open=True)
    stream = _stream(FakeConnector([websocket]))

    async def scenario():
        await stream.connect()
        assert await _wait_until(lambda: stream.is_connected)
        first = await stream.subscribe(["BTCUSDT", "BTCUSDT", "ETHUSDT"])
        second = await stream.subscribe(["BTCUSDT"])
        removed = await stream.unsubscribe(["ETHUSDT", "DOGEUSDT"])
        await stream.close()
        return first, second, removed

    first, second, removed = asyncio.run(scenario())

    assert first == ["BTCUSDT", "ETHUSDT"]
    assert second == []
    assert removed == ["ETHUSDT"]
    assert [frame["method"] for frame in websocket.sent] == ["SUBSCRIBE", "UNSUBSCRIBE"]
    assert websocket.sent[0]["params"] == ["btcusdt@miniTicker", "ethusdt@miniTicker"]
    assert websocket.sent[1]["params"] == ["ethusdt@miniTicker"]


def test_subscribe_while_disconnected_only_updates_registry():
    registry = SubscriptionRegistry()
    stream = _stream(FakeConnector(), registry)

    assert asyncio.run(stream.subscribe(["BTCUSDT"])) == ["BTCUSDT"]
    assert registry.snapshot() == ["BTCUSDT"]
    assert stream.status().subscribed_symbols == ["BTCUSDT"]


def test_error_response_is_logged_with_request(caplog):
    registry = SubscriptionRegistry()
    stream = _stream(FakeConnector(), registry)
    frame = registry.build_frame(SUBSCRIBE, ["BTCUSDT"])

    stream._handle_message(
        json.dumps({"error": {"code": 2, "msg": "Invalid request"}, "id": frame["id"]})
    )

    assert "SUBSCRIBE 1 for btcusdt@miniTicker failed: Invalid request" in caplog.text
    assert registry.acknowledge(frame["id"]) is None


def test_binary_frames_are_decoded():
    buffer = IngressBuffer(capacity=10)
    stream = _stream(FakeConnector(), buffer=buffer)

    stream._handle_message(tick_frame("ETHUSDT", "45.5").encode("utf-8"))

    assert buffer.pop().last_price == 45.5
