# src/crypto_tracker/connection/exceptions.py

class BinanceAPIError(Exception):
    """Base exception for all Binance API related errors."""
    pass

class RateLimitError(BinanceAPIError):
    """Raised when Binance rejects a request for exceeding request weight (HTTP 429/418)."""
    pass

class ServiceUnavailableError(BinanceAPIError):
    """Raised when Binance is unreachable, times out, or answers with a 5xx status."""
    pass

class ResponseParseError(BinanceAPIError):
    """Raised when a response body is not the JSON document the endpoint promises."""
    pass
