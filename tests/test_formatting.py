import pytest

from crypto_tracker.formatting import format_change, format_number, format_percent, format_row
from crypto_tracker.market_data.models import SymbolPair, TrackedPair


@pytest.mark.parametrize(
    "value, expected",
    [
        (43250.5, "43250.50"),
        (1.0, "1.00"),
        (0.0, "0.00"),
        (-0.5, "-0.50"),
        (0.00012345, "0.00012"),
        (0.0612, "0.061"),
    ],
)
def test_format_number(value, expected):
    assert format_number(value) == expected


def test_format_change_uses_two_decimals_above_one():
    assert format_change(10.0, 110.0) == "10.00"
    assert format_change(-0.000012, 0.5) == "-0.000012"


def test_format_percent():
    assert format_percent(-10.0) == "-10.00%"


def test_format_row_shows_direction_and_placeholder():
    pair = SymbolPair("BTCUSDT", "BTC", "USDT")
    pending = TrackedPair(row_id="a", pair=pair)
    rising = TrackedPair(row_id="b", pair=pair, price=110.0, change=10.0, change_percent=10.0, baseline=100.0)

    assert format_row(pending).split() == ["BTCUSDT", "-"]
    assert format_row(rising).split() == ["BTCUSDT", "110.00", "10.00", "10.00%", "+"]
