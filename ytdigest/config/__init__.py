"""Configuration for ytdigest."""

from ytdigest.config.loader import load_config
from ytdigest.config.schema import (
    DatabaseConfig,
    MessagesConfig,
    RedisConfig,
    Settings,
    StreamsConfig,
    SupervisorConfig,
    TelegramConfig,
)

__all__ = [
    "load_config",
    "DatabaseConfig",
    "MessagesConfig",
    "RedisConfig",
    "Settings",
    "StreamsConfig",
    "SupervisorConfig",
    "TelegramConfig",
]
