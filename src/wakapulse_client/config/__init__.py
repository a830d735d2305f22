"""Configuration module for the WakaPulse client."""

from .logger_config import setup_logging
from .settings import ActivityConfig, ConfigManager, DeliveryConfig, LoggingConfig, WakaPulseConfig, get_config_manager, get_current_config

__all__ = [
    "WakaPulseConfig",
    "ActivityConfig",
    "DeliveryConfig",
    "LoggingConfig",
    "ConfigManager",
    "get_config_manager",
    "get_current_config",
    "setup_logging",
]
