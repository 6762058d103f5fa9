"""Config module exports."""

from postdex.config.loader import load_config
from postdex.config.models import (
    IndexConfig,
    LoggingConfig,
    LogOutputConfig,
    PostdexConfig,
    WatcherConfig,
)

__all__ = [
    "load_config",
    "IndexConfig",
    "LoggingConfig",
    "LogOutputConfig",
    "PostdexConfig",
    "WatcherConfig",
]
