# src/crypto_tracker/market_data/exceptions.py

class MarketDataError(Exception):
    """Base exception for the market_data module."""
    pass

class PairNotFoundError(MarketDataError):
    """Raised when a symbol is requested that the loaded catalog does not list."""
    def __init__(self, symbol: str):
        self.symbol = symbol
        message = f"Symbol '{symbol}' not found in the symbol catalog."
        super().__init__(message)

class RowNotFoundError(MarketDataError):
    """Raised when a tracked row id is not (or no longer) in the watchlist."""
    def __init__(self, row_id: str):
        self.row_id = row_id
        message = f"Tracked row '{row_id}' not found."
        super().__init__(message)

class TrackerNotRunningError(MarketDataError):
    """Raised when a control-plane call is made before start() or after stop()."""
    pass
