# src/crypto_tracker/market_data/catalog.py

import logging
from typing import Any, Dict, Iterable, List

from crypto_tracker.connection.exceptions import BinanceAPIError
from crypto_tracker.connection.rest_client import BinanceRESTClient
from crypto_tracker.logging_config import structured_log_extra
from crypto_tracker.market_data.models import SymbolPair

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10


def _create_symbol_pair(record: Dict[str, Any]) -> SymbolPair | None:
    """
    Builds a SymbolPair from one exchangeInfo record, or returns None when any of
    symbol, baseAsset or quoteAsset is missing.
    """
    symbol = record.get("symbol")
    base_asset = record.get("baseAsset")
    quote_asset = record.get("quoteAsset")

    if not symbol or not base_asset or not quote_asset:
        return None

    return SymbolPair(
        symbol=str(symbol),
        base_asset=str(base_asset),
        quote_asset=str(quote_asset),
    )


def parse_symbol_pairs(exchange_info: Dict[str, Any]) -> List[SymbolPair]:
    """
    Extracts the tradable pairs from an exchangeInfo payload, keeping only
    complete records.
    """
    records = exchange_info.get("symbols") or []
    if not isinstance(records, list):
        logger.warning("exchangeInfo 'symbols' field is not a list; ignoring it.")
        return []

    pairs: List[SymbolPair] = []
    skipped = 0
    for record in records:
        pair = _create_symbol_pair(record) if isinstance(record, dict) else None
        if pair is None:
            skipped += 1
            continue
        pairs.append(pair)

    if skipped:
        logger.debug(f"Skipped {skipped} incomplete exchangeInfo records.")
    return pairs


def load_symbol_pairs(client: BinanceRESTClient) -> List[SymbolPair]:
    """
    Fetches every tradable symbol pair from the exchange directory. Transport and
    parse failures are logged and yield an empty list.
    """
    logger.info("Loading symbol catalog...")

    try:
        exchange_info = client.get_exchange_info()
    except BinanceAPIError as e:
        logger.error(
            f"Failed to fetch symbol catalog from Binance: {e}",
            extra=structured_log_extra(event="catalog_fetch_failed"),
        )
        return []

    pairs = parse_symbol_pairs(exchange_info)
    logger.info(f"Symbol catalog contains {len(pairs)} pairs.")
    return pairs


def search_pairs(
    pairs: Iterable[SymbolPair], query: str, limit: int = DEFAULT_SEARCH_LIMIT
) -> List[SymbolPair]:
    """
    Returns up to ``limit`` pairs whose symbol starts with the upper-cased query.
    An empty query matches nothing.
    """
    prefix = query.strip().upper()
    if not prefix or limit <= 0:
        return []

    matches: List[SymbolPair] = []
    for pair in pairs:
        if pair.symbol.startswith(prefix):
            matches.append(pair)
            if len(matches) >= limit:
                break
    return matches
