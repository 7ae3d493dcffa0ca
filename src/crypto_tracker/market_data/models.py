from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, NamedTuple, Optional

DEFAULT_STREAM_SUFFIX = "@miniTicker"


@dataclass(frozen=True)
class SymbolPair:
    symbol: str
    base_asset: str
    quote_asset: str

    def stream_name(self, suffix: str = DEFAULT_STREAM_SUFFIX) -> str:
        return stream_name(self.symbol, suffix)


def stream_name(symbol: str, suffix: str = DEFAULT_STREAM_SUFFIX) -> str:
    """Binance stream names are the lower-cased symbol plus the channel suffix."""
    return f"{symbol.lower()}{suffix}"


@dataclass
class TrackedPair:
    """Price state of one tracked row; several rows may share a symbol."""

    row_id: str
    pair: SymbolPair
    price: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0
    baseline: Optional[float] = None

    @property
    def symbol(self) -> str:
        return self.pair.symbol

    @property
    def direction(self) -> int:
        if self.change > 0:
            return 1
        if self.change < 0:
            return -1
        return 0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING_MANUALLY = "closing_manually"


@dataclass(frozen=True)
class IngressMessage:
    symbol: str
    last_price: float


class PriceUpdate(NamedTuple):
    symbol: str
    price: float
    change: float
    change_percent: float


@dataclass
class ConnectionStatus:
    state: ConnectionState
    subscribed_symbols: List[str] = field(default_factory=list)
    reconnect_attempts: int = 0
    buffered_messages: int = 0
    dropped_messages: int = 0

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED
