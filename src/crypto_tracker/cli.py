"""Command line interface for the crypto tracker."""

from __future__ import annotations

import argparse
import sys
from typing import Callable

from crypto_tracker.config import load_config
from crypto_tracker.connection.rest_client import BinanceRESTClient
from crypto_tracker.main import run as run_watch
from crypto_tracker.market_data.catalog import DEFAULT_SEARCH_LIMIT, load_symbol_pairs, search_pairs


def _add_config_arguments(subparser: argparse.ArgumentParser) -> None:
    """Attach the standard --config/--env arguments to a subparser."""

    subparser.add_argument("--config", dest="config_path", help="Path to a config.yaml file")
    subparser.add_argument(
        "--env",
        choices=["dev", "prod"],
        help="Configuration environment (defaults to CRYPTO_TRACKER_ENV or prod)",
    )


def _print_error(message: str) -> int:
    """Print an error message and return a non-zero exit code."""

    print(message)
    return 1


def _symbols_command(args: argparse.Namespace) -> int:
    """List tradable pairs from the exchange directory."""

    config = load_config(config_path=args.config_path, env=args.env)
    client = BinanceRESTClient(
        api_url=config.endpoints.rest_base_url,
        request_timeout=config.endpoints.request_timeout_seconds,
    )

    try:
        pairs = load_symbol_pairs(client)
    finally:
        client.close()

    if not pairs:
        return _print_error("Symbol catalog unavailable; check connectivity and try again.")

    if args.search:
        limit = args.limit if args.limit is not None else DEFAULT_SEARCH_LIMIT
        pairs = search_pairs(pairs, args.search, limit=limit)
        if not pairs:
            return _print_error(f"No pairs match '{args.search}'.")
    elif args.limit:
        pairs = pairs[: args.limit]

    for pair in pairs:
        print(f"{pair.symbol:<14} {pair.base_asset:>8} / {pair.quote_asset}")
    return 0


def _watch_command(args: argparse.Namespace) -> int:
    """Stream live prices for the given symbols."""

    if args.duration is not None and args.duration <= 0:
        return _print_error("--duration must be positive.")

    return run_watch(
        config_path=args.config_path,
        env=args.env,
        symbols=args.symbols or None,
        duration=args.duration,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crypto-tracker", description="Live Binance price tracker")
    subparsers = parser.add_subparsers(dest="command", required=True)

    symbols_parser = subparsers.add_parser("symbols", help="List tradable symbol pairs")
    symbols_parser.add_argument("--search", help="Only show pairs whose symbol starts with this prefix")
    symbols_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help=f"Maximum number of pairs to show (search defaults to {DEFAULT_SEARCH_LIMIT})",
    )
    _add_config_arguments(symbols_parser)
    symbols_parser.set_defaults(func=_symbols_command)

    watch_parser = subparsers.add_parser("watch", help="Stream live prices and daily change")
    watch_parser.add_argument(
        "symbols",
        nargs="*",
        help="Symbols to track, e.g. BTCUSDT ETHUSDT (defaults to the configured watchlist)",
    )
    watch_parser.add_argument(
        "--duration",
        type=float,
        help="Stop after this many seconds instead of waiting for Ctrl+C",
    )
    _add_config_arguments(watch_parser)
    watch_parser.set_defaults(func=_watch_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the `crypto-tracker` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    command: Callable[[argparse.Namespace], int] = getattr(args, "func")
    return command(args)


if __name__ == "__main__":
    sys.exit(main())
