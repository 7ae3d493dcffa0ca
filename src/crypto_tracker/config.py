from __future__ import annotations

# Re-export loader helpers
from .config_loader import get_config_dir, load_config

# Re-export config models
from .config_models import (
    AppConfig,
    BaselineConfig,
    DispatcherConfig,
    EndpointsConfig,
    ScheduleConfig,
    StreamConfig,
)

# Re-export market data models for convenience
from .market_data.models import ConnectionStatus, SymbolPair, TrackedPair

__all__ = [
    # models
    "EndpointsConfig",
    "BaselineConfig",
    "StreamConfig",
    "DispatcherConfig",
    "ScheduleConfig",
    "AppConfig",
    # loader
    "get_config_dir",
    "load_config",
    # market-data
    "SymbolPair",
    "TrackedPair",
    "ConnectionStatus",
]
