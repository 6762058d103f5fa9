"""Core module exports."""

from postdex.core.errors import (
    ConfigError,
    ErrorCode,
    InternalError,
    MetadataParseError,
    PostdexError,
    ScanError,
)
from postdex.core.logging import (
    clear_cycle_id,
    configure_logging,
    get_cycle_id,
    get_logger,
    set_cycle_id,
)

__all__ = [
    # Errors
    "ConfigError",
    "ErrorCode",
    "InternalError",
    "MetadataParseError",
    "PostdexError",
    "ScanError",
    # Logging
    "clear_cycle_id",
    "configure_logging",
    "get_cycle_id",
    "get_logger",
    "set_cycle_id",
]
