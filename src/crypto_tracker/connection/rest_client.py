# src/crypto_tracker/connection/rest_client.py

import json
from typing import Any, Dict, Optional, Sequence

import requests

from .exceptions import (
    BinanceAPIError,
    RateLimitError,
    ResponseParseError,
    ServiceUnavailableError,
)

BINANCE_API_URL = "https://api.binance.com"
API_VERSION = "v3"

# Binance answers 418 once an IP keeps hammering after 429s.
RATE_LIMIT_STATUSES = {418, 429}


class BinanceRESTClient:
    def __init__(
        self,
        api_url: str = BINANCE_API_URL,
        request_timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.request_timeout = request_timeout

        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "CryptoTracker/0.1.0"})

    def _get_url(self, endpoint: str) -> str:
        return f"{self.api_url}/api/{API_VERSION}/{endpoint}"

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        """Extracts Binance's ``{"code": ..., "msg": ...}`` error body when present."""
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        if isinstance(body, dict) and "msg" in body:
            return f"{body.get('code')}: {body['msg']}"
        return f"HTTP {response.status_code}"

    def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Internal request handler that maps transport and HTTP failures onto the
        connection exception hierarchy.
        """
        url = self._get_url(endpoint)

        try:
            response = self.session.get(url, params=params or {}, timeout=self.request_timeout)

            if response.status_code in RATE_LIMIT_STATUSES:
                raise RateLimitError(
                    f"Rate limit exceeded: {self._error_message(response)}"
                )

            if 500 <= response.status_code < 600:
                raise ServiceUnavailableError(
                    f"Binance API Service Error: HTTP {response.status_code}"
                )

            if 400 <= response.status_code < 500:
                raise BinanceAPIError(
                    f"Binance API rejected {endpoint}: {self._error_message(response)}"
                )

            response.raise_for_status()

        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in RATE_LIMIT_STATUSES:
                raise RateLimitError("Rate limit exceeded") from e
            if status_code and 500 <= status_code < 600:
                raise ServiceUnavailableError(f"Binance API Service Error: {e}") from e
            raise BinanceAPIError(f"HTTP Error: {e}") from e
        except requests.exceptions.Timeout as e:
            raise ServiceUnavailableError(f"Request timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ServiceUnavailableError(f"Network Error: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise ResponseParseError(f"Invalid JSON from {endpoint}: {e}") from e

    def get_public(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Makes a GET request to a public Binance API endpoint."""
        return self._request(endpoint, params=params)

    def get_exchange_info(self, symbol_status: str = "TRADING") -> Dict[str, Any]:
        """
        Retrieves the symbol directory.
        Endpoint: exchangeInfo
        """
        result = self.get_public("exchangeInfo", params={"symbolStatus": symbol_status})
        if not isinstance(result, dict):
            raise ResponseParseError("exchangeInfo did not return an object")
        return result

    def get_trading_day_tickers(self, symbols: Sequence[str]) -> list:
        """
        Retrieves the current trading-day ticker (including ``openPrice``) for
        every symbol in one call. The symbol list is sent as a compact JSON
        array; ``requests`` takes care of URL-escaping it.
        Endpoint: ticker/tradingDay
        """
        payload = json.dumps(list(symbols), separators=(",", ":"))
        result = self.get_public("ticker/tradingDay", params={"symbols": payload})
        if not isinstance(result, list):
            raise ResponseParseError("ticker/tradingDay did not return an array")
        return result

    def close(self) -> None:
        self.session.close()
