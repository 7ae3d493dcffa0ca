from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import appdirs  # type: ignore[import-untyped]
import yaml  # type: ignore[import-untyped]

from crypto_tracker.config_models import (
    AppConfig,
    BaselineConfig,
    DispatcherConfig,
    EndpointsConfig,
    ScheduleConfig,
    StreamConfig,
)

logger = logging.getLogger(__name__)

ALLOWED_ENVS = {"dev", "prod"}
DEFAULT_ENV = "prod"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def get_config_dir() -> Path:
    """
    Returns the OS-specific configuration directory for the tracker using appdirs.
    """
    return Path(appdirs.user_config_dir("crypto_tracker"))


def _read_yaml_mapping(path: Path, event: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        logger.warning(
            "Configuration file is not a mapping; ignoring it",
            extra={"event": event, "config_path": str(path)},
        )
        return {}
    return data


def _deep_merge_dicts(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = base.copy()
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _section(raw_config: Dict[str, Any], name: str, config_path: Path) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        logger.warning(
            "%s config is not a mapping; using defaults",
            name.capitalize(),
            extra={"event": f"config_invalid_{name}", "config_path": str(config_path)},
        )
        return {}
    return data


def _validated_number(
    section: Dict[str, Any],
    key: str,
    default: float,
    field_name: str,
    config_path: Path,
    *,
    integer: bool = False,
    min_value: float = 0,
) -> Any:
    if key not in section:
        return default

    value = section[key]
    valid_type = isinstance(value, int) if integer else isinstance(value, (int, float))
    if valid_type and not isinstance(value, bool) and value >= min_value:
        return value if integer else float(value)

    logger.warning(
        "%s is invalid; using default %s",
        field_name,
        default,
        extra={"event": "config_invalid_value", "field": field_name, "config_path": str(config_path)},
    )
    return default


def _validated_str(
    section: Dict[str, Any], key: str, default: str, field_name: str, config_path: Path
) -> str:
    value = section.get(key, default)
    if isinstance(value, str) and value.strip():
        return value.strip()

    logger.warning(
        "%s is invalid; using default %s",
        field_name,
        default,
        extra={"event": "config_invalid_value", "field": field_name, "config_path": str(config_path)},
    )
    return default


def _parse_watchlist(raw: Any, config_path: Path) -> List[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning(
            "Watchlist should be a list of symbols; defaulting to empty",
            extra={"event": "config_invalid_watchlist", "config_path": str(config_path)},
        )
        return []

    symbols: List[str] = []
    for entry in raw:
        if not isinstance(entry, str) or not entry.strip():
            logger.warning(
                "Skipping invalid watchlist entry %r",
                entry,
                extra={"event": "config_invalid_watchlist_entry", "config_path": str(config_path)},
            )
            continue
        # duplicates are legal: each entry is its own row
        symbols.append(entry.strip().upper())
    return symbols


def load_config(
    config_path: Optional[Path] = None, env: Optional[str] = None
) -> AppConfig:
    """
    Loads the application configuration from the default location or a specified
    path, layering ``config.<env>.yaml`` on top when it exists.
    """
    if config_path is None:
        config_path = get_config_dir() / "config.yaml"

    config_path = Path(config_path).expanduser()

    initial_env = env if env is not None else os.environ.get("CRYPTO_TRACKER_ENV")
    if initial_env not in ALLOWED_ENVS:
        if initial_env is not None:
            logger.warning(
                "Invalid environment '%s'; defaulting to '%s'",
                initial_env,
                DEFAULT_ENV,
                extra={"event": "config_invalid_env", "config_path": str(config_path)},
            )
        effective_env = DEFAULT_ENV
    else:
        effective_env = initial_env

    if not config_path.exists():
        logger.warning(
            "Configuration file not found; using defaults",
            extra={"event": "config_missing_file", "config_path": str(config_path)},
        )
        raw_config: Dict[str, Any] = {}
    else:
        raw_config = _read_yaml_mapping(config_path, "config_invalid_format")

    env_config_path = config_path.parent / f"config.{effective_env}.yaml"
    if env_config_path.exists():
        env_config = _read_yaml_mapping(env_config_path, "config_invalid_env_file")
        raw_config = _deep_merge_dicts(raw_config, env_config)

    defaults = AppConfig()

    endpoints_data = _section(raw_config, "endpoints", config_path)
    endpoints = EndpointsConfig(
        rest_base_url=_validated_str(
            endpoints_data, "rest_base_url", defaults.endpoints.rest_base_url,
            "endpoints.rest_base_url", config_path,
        ),
        stream_url=_validated_str(
            endpoints_data, "stream_url", defaults.endpoints.stream_url,
            "endpoints.stream_url", config_path,
        ),
        request_timeout_seconds=_validated_number(
            endpoints_data, "request_timeout_seconds", defaults.endpoints.request_timeout_seconds,
            "endpoints.request_timeout_seconds", config_path, min_value=0.1,
        ),
    )

    baseline_data = _section(raw_config, "baseline", config_path)
    baseline = BaselineConfig(
        retry_delay_seconds=_validated_number(
            baseline_data, "retry_delay_seconds", defaults.baseline.retry_delay_seconds,
            "baseline.retry_delay_seconds", config_path,
        ),
        max_retries=_validated_number(
            baseline_data, "max_retries", defaults.baseline.max_retries,
            "baseline.max_retries", config_path, integer=True,
        ),
        max_symbols_per_request=_validated_number(
            baseline_data, "max_symbols_per_request", defaults.baseline.max_symbols_per_request,
            "baseline.max_symbols_per_request", config_path, integer=True, min_value=1,
        ),
    )

    stream_data = _section(raw_config, "stream", config_path)
    stream = StreamConfig(
        reconnect_delay_seconds=_validated_number(
            stream_data, "reconnect_delay_seconds", defaults.stream.reconnect_delay_seconds,
            "stream.reconnect_delay_seconds", config_path,
        ),
        max_reconnect_attempts=_validated_number(
            stream_data, "max_reconnect_attempts", defaults.stream.max_reconnect_attempts,
            "stream.max_reconnect_attempts", config_path, integer=True,
        ),
        ping_interval_seconds=_validated_number(
            stream_data, "ping_interval_seconds", defaults.stream.ping_interval_seconds,
            "stream.ping_interval_seconds", config_path, min_value=1,
        ),
        stream_suffix=_validated_str(
            stream_data, "stream_suffix", defaults.stream.stream_suffix,
            "stream.stream_suffix", config_path,
        ),
    )

    dispatcher_data = _section(raw_config, "dispatcher", config_path)
    dispatcher = DispatcherConfig(
        tick_interval_ms=_validated_number(
            dispatcher_data, "tick_interval_ms", defaults.dispatcher.tick_interval_ms,
            "dispatcher.tick_interval_ms", config_path, integer=True, min_value=1,
        ),
        buffer_capacity=_validated_number(
            dispatcher_data, "buffer_capacity", defaults.dispatcher.buffer_capacity,
            "dispatcher.buffer_capacity", config_path, integer=True, min_value=1,
        ),
    )

    schedule_data = _section(raw_config, "schedule", config_path)
    schedule = ScheduleConfig(
        catalog_refresh_seconds=_validated_number(
            schedule_data, "catalog_refresh_seconds", defaults.schedule.catalog_refresh_seconds,
            "schedule.catalog_refresh_seconds", config_path, integer=True, min_value=60,
        ),
        baseline_refresh_offset_seconds=_validated_number(
            schedule_data, "baseline_refresh_offset_seconds",
            defaults.schedule.baseline_refresh_offset_seconds,
            "schedule.baseline_refresh_offset_seconds", config_path, integer=True,
        ),
    )

    log_level = str(raw_config.get("log_level", defaults.log_level)).upper()
    if log_level not in LOG_LEVELS:
        logger.warning(
            "log_level %s is invalid; using %s",
            log_level,
            defaults.log_level,
            extra={"event": "config_invalid_log_level", "config_path": str(config_path)},
        )
        log_level = defaults.log_level

    return AppConfig(
        endpoints=endpoints,
        baseline=baseline,
        stream=stream,
        dispatcher=dispatcher,
        schedule=schedule,
        watchlist=_parse_watchlist(raw_config.get("watchlist"), config_path),
        log_level=log_level,
    )
