# tests/test_dispatcher.py

import asyncio
from unittest.mock import MagicMock

import pytest

from crypto_tracker.market_data.baseline import BaselineStore
from crypto_tracker.market_data.dispatcher import UpdateDispatcher, compute_change
from crypto_tracker.market_data.ingress import IngressBuffer
from crypto_tracker.market_data.models import IngressMessage, SymbolPair
from crypto_tracker.market_data.watchlist import Watchlist
from crypto_tracker.metrics import StreamMetrics

BTC = SymbolPair("BTCUSDT", "BTC", "USDT")
ETH = SymbolPair("ETHUSDT", "ETH", "USDT")


@pytest.fixture
def components():
    baselines = BaselineStore()
    baselines.update({"BTCUSDT": 100.0, "ETHUSDT": 50.0})
    return IngressBuffer(capacity=10), baselines, Watchlist()


def test_compute_change_rise_and_fall():
    assert compute_change(110.0, 100.0) == pytest.approx((10.0, 10.0))
    assert compute_change(45.0, 50.0) == pytest.approx((-5.0, -10.0))


def test_compute_change_requires_nonzero_baseline():
    with pytest.raises(ValueError):
        compute_change(1.0, 0.0)


def test_process_fans_out_in_one_callback(components):
    buffer, baselines, watchlist = components
    first = watchlist.add(BTC)
    second = watchlist.add(BTC)
    watchlist.add(ETH)
    on_update = MagicMock()
    metrics = StreamMetrics()
    dispatcher = UpdateDispatcher(buffer, baselines, watchlist, on_update, metrics=metrics)

    rows = dispatcher.process(IngressMessage("BTCUSDT", 110.0))

    on_update.assert_called_once_with([first, second])
    assert rows == [first, second]
    assert first.change == pytest.approx(10.0)
    assert second.change_percent == pytest.approx(10.0)
    assert metrics.snapshot()["updates_emitted"] == 2


def test_process_drops_tick_without_baseline(components):
    buffer, baselines, watchlist = components
    row = watchlist.add(SymbolPair("DOGEUSDT", "DOGE", "USDT"))
    on_update = MagicMock()
    metrics = StreamMetrics()
    dispatcher = UpdateDispatcher(buffer, baselines, watchlist, on_update, metrics=metrics)

    assert dispatcher.process(IngressMessage("DOGEUSDT", 0.1)) == []

    on_update.assert_not_called()
    assert row.price == 0.0
    assert metrics.snapshot()["ticks_ignored"] == 1


def test_process_logs_callback_failures(components, caplog):
    buffer, baselines, watchlist = components
    watchlist.add(ETH)
    dispatcher = UpdateDispatcher(
        buffer, baselines, watchlist, MagicMock(side_effect=RuntimeError("ui gone"))
    )

    rows = dispatcher.process(IngressMessage("ETHUSDT", 45.0))

    assert rows[0].change == pytest.approx(-5.0)
    assert "Update callback failed" in caplog.text


def test_run_drains_one_message_per_tick(components):
    buffer, baselines, watchlist = components
    watchlist.add(BTC)
    for price in (101.0, 102.0, 103.0):
        buffer.push(IngressMessage("BTCUSDT", price))

    calls = []

    def on_update(rows):
        calls.append(rows[0].price)
        dispatcher.cancel_event.set()

    dispatcher = UpdateDispatcher(buffer, baselines, watchlist, on_update, tick_interval=0)

    asyncio.run(dispatcher.run())

    assert calls == [101.0]
    assert len(buffer) == 2


def test_ensure_running_respects_cancellation(components):
    buffer, baselines, watchlist = components
    dispatcher = UpdateDispatcher(buffer, baselines, watchlist, tick_interval=0)

    async def scenario():
        assert dispatcher.ensure_running() is True
        assert dispatcher.ensure_running() is False
        await dispatcher.stop()
        assert dispatcher.is_running is False
        assert dispatcher.ensure_running() is False

    asyncio.run(scenario())
