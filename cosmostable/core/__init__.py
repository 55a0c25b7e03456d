"""Configuration and logging."""

from .config_manager import ConfigManager, CosmosConfig, TableStorageSettings
from .logging_config import setup_logging, setup_logging_from_config, get_logger

__all__ = [
    "ConfigManager",
    "CosmosConfig",
    "TableStorageSettings",
    "setup_logging",
    "setup_logging_from_config",
    "get_logger",
]
