"""Long-running watch loop for the crypto tracker."""

from __future__ import annotations

import logging
import signal
import threading
import time
from typing import List, Optional

from crypto_tracker import APP_VERSION
from crypto_tracker.config import load_config
from crypto_tracker.formatting import format_row
from crypto_tracker.logging_config import configure_logging, get_log_environment, structured_log_extra
from crypto_tracker.market_data.api import MarketDataAPI
from crypto_tracker.market_data.models import TrackedPair

logger = logging.getLogger(__name__)

READY_TIMEOUT_SECONDS = 60.0


def _print_rows(rows: List[TrackedPair]) -> None:
    for row in rows:
        print(format_row(row), flush=True)


def _shutdown(
    market_data: MarketDataAPI,
    stop_event: threading.Event,
    *,
    reason: str = "exit",
    signal_number: Optional[int] = None,
) -> None:
    """Signal the wait loop to stop and tear the pipeline down."""

    first_shutdown = not stop_event.is_set()
    stop_event.set()

    log_message = "Initiating shutdown" if first_shutdown else "Shutdown already in progress"
    logger.info(
        log_message,
        extra=structured_log_extra(
            event="shutdown",
            reason=reason,
            signal_number=signal_number,
            metrics=market_data.metrics.snapshot(),
        ),
    )

    try:
        market_data.stop()
    except Exception as exc:  # pragma: no cover - defensive logging
        logger.error("Error shutting down market data: %s", exc)

    logger.info("Shutdown complete", extra=structured_log_extra(event="shutdown_complete", reason=reason))


def run(
    config_path: Optional[str] = None,
    env: Optional[str] = None,
    symbols: Optional[List[str]] = None,
    duration: Optional[float] = None,
) -> int:
    """Start the pipeline, print row updates until interrupted or ``duration`` elapses."""

    config = load_config(config_path=config_path, env=env)
    configure_logging(level=config.log_level, env=env)
    stop_event = threading.Event()

    market_data = MarketDataAPI(config, on_update=_print_rows)
    initial = [symbol.upper() for symbol in symbols] if symbols else list(config.watchlist)

    if not initial:
        logger.error("No symbols to watch; pass symbols or configure a watchlist.")
        return 1

    logger.info(
        "Starting crypto tracker",
        extra=structured_log_extra(
            event="startup",
            env=get_log_environment(),
            app_version=APP_VERSION,
            symbols=initial,
        ),
    )

    def _signal_handler(signum, _frame) -> None:  # pragma: no cover - signal driven
        _shutdown(market_data, stop_event, reason="signal", signal_number=signum)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    market_data.start(initial)
    deadline = time.monotonic() + duration if duration else None

    try:
        ready = market_data.wait_until_ready(timeout=READY_TIMEOUT_SECONDS)
        if not ready and not stop_event.is_set():
            logger.warning("Startup is taking longer than expected; continuing to wait for data.")
        _print_rows(market_data.get_rows())

        while not stop_event.is_set():
            if deadline is not None and time.monotonic() >= deadline:
                break
            stop_event.wait(1.0)
    finally:
        _shutdown(market_data, stop_event, reason="loop_exit")

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    run()
