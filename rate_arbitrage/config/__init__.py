from .loader import find_config_path, load_settings
from .models import AggregatorConfig, ArbitrageConfig, FeeConfig, LoggingConfig, ProviderConfig, Settings

__all__ = [
    "Settings",
    "AggregatorConfig",
    "ArbitrageConfig",
    "FeeConfig",
    "LoggingConfig",
    "ProviderConfig",
    "load_settings",
    "find_config_path",
]
