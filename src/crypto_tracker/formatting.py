"""Text rendering of tracked rows for terminal output."""

from __future__ import annotations

import math

from crypto_tracker.market_data.models import TrackedPair

_DIRECTION_MARKERS = {1: "+", -1: "-", 0: "="}


def format_number(value: float, decimals: int = 2) -> str:
    """
    Fixed-point rendering with ``decimals`` places, widened for values below one
    so small prices keep their significant digits (0.00012345 -> "0.00012").
    """
    magnitude = abs(value)
    if 0 < magnitude < 1:
        decimals = len(str(round(1 / magnitude))) + 1
    return f"{value:.{decimals}f}"


def format_change(change: float, price: float) -> str:
    if price > 1:
        return f"{change:.2f}"
    return format_number(change)


def format_percent(change_percent: float) -> str:
    return f"{change_percent:.2f}%"


def format_row(row: TrackedPair) -> str:
    if row.baseline is None or not math.isfinite(row.price):
        return f"{row.symbol:<12} {'-':>16}"
    marker = _DIRECTION_MARKERS[row.direction]
    return (
        f"{row.symbol:<12} {format_number(row.price):>16} "
        f"{format_change(row.change, row.price):>14} {format_percent(row.change_percent):>9} {marker}"
    )
