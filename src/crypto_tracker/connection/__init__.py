"""HTTP transport for the Binance public REST API."""

from .exceptions import (
    BinanceAPIError,
    RateLimitError,
    ResponseParseError,
    ServiceUnavailableError,
)
from .rest_client import BinanceRESTClient

__all__ = [
    "BinanceAPIError",
    "BinanceRESTClient",
    "RateLimitError",
    "ResponseParseError",
    "ServiceUnavailableError",
]
