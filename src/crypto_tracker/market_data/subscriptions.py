"""Authoritative set of symbols the live push-feed connection should carry."""

from __future__ import annotations

import itertools
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from crypto_tracker.market_data.models import DEFAULT_STREAM_SUFFIX, stream_name


SUBSCRIBE = "SUBSCRIBE"
UNSUBSCRIBE = "UNSUBSCRIBE"


class SubscriptionRegistry:
    """
    Holds each subscribed symbol once, no matter how many rows reference it, and
    builds the batched control frames that (un)subscribe them.
    """

    def __init__(self, stream_suffix: str = DEFAULT_STREAM_SUFFIX) -> None:
        self._stream_suffix = stream_suffix
        # dict keeps insertion order for deterministic replay frames
        self._symbols: Dict[str, None] = {}
        self._pending: Dict[int, Tuple[str, List[str]]] = {}
        self._request_ids = itertools.count(1)
        self._lock = Lock()

    def add(self, *symbols: str) -> List[str]:
        """Adds symbols; returns only those that were not already subscribed."""
        added: List[str] = []
        with self._lock:
            for symbol in symbols:
                if symbol in self._symbols:
                    continue
                self._symbols[symbol] = None
                added.append(symbol)
        return added

    def remove(self, *symbols: str) -> List[str]:
        """Removes symbols; returns only those that were actually subscribed."""
        removed: List[str] = []
        with self._lock:
            for symbol in symbols:
                if symbol not in self._symbols:
                    continue
                del self._symbols[symbol]
                removed.append(symbol)
        return removed

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._symbols)

    def __contains__(self, symbol: object) -> bool:
        with self._lock:
            return symbol in self._symbols

    def __len__(self) -> int:
        with self._lock:
            return len(self._symbols)

    def build_frame(self, method: str, symbols: Iterable[str]) -> Optional[Dict[str, Any]]:
        """
        Builds one control frame naming every stream in ``symbols``. Returns None
        when there is nothing to send.
        """
        if method not in (SUBSCRIBE, UNSUBSCRIBE):
            raise ValueError(f"Unsupported control method: {method}")

        params = [stream_name(symbol, self._stream_suffix) for symbol in symbols]
        if not params:
            return None

        with self._lock:
            request_id = next(self._request_ids)
            self._pending[request_id] = (method, params)

        return {"method": method, "params": params, "id": request_id}

    def acknowledge(self, request_id: Any) -> Optional[Tuple[str, List[str]]]:
        """Pops the pending request matching an exchange response id."""
        with self._lock:
            return self._pending.pop(request_id, None)

    def clear_pending(self) -> None:
        """Forgets unanswered requests; a fresh connection will never answer them."""
        with self._lock:
            self._pending.clear()
