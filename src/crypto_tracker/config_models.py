from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class EndpointsConfig:
    rest_base_url: str = "https://api.binance.com"
    stream_url: str = "wss://stream.binance.com:443/stream"
    request_timeout_seconds: float = 10.0


@dataclass
class BaselineConfig:
    retry_delay_seconds: float = 10.0
    max_retries: int = 10
    # ticker/tradingDay accepts at most 100 symbols per call
    max_symbols_per_request: int = 100


@dataclass
class StreamConfig:
    reconnect_delay_seconds: float = 30.0
    max_reconnect_attempts: int = 10
    ping_interval_seconds: float = 20.0
    stream_suffix: str = "@miniTicker"


@dataclass
class DispatcherConfig:
    tick_interval_ms: int = 100
    buffer_capacity: int = 100


@dataclass
class ScheduleConfig:
    catalog_refresh_seconds: int = 86400
    baseline_refresh_offset_seconds: int = 5


@dataclass
class AppConfig:
    endpoints: EndpointsConfig = field(default_factory=EndpointsConfig)
    baseline: BaselineConfig = field(default_factory=BaselineConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    watchlist: list[str] = field(default_factory=list)
    log_level: str = "INFO"
