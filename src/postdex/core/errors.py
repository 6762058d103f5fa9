"""postdex error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Index
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_FILE_NOT_FOUND = 2004

    # Index (3xxx)
    SCAN_FAILED = 3001
    METADATA_PARSE_ERROR = 3002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(frozen=True, slots=True)
class PostdexError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'SCAN_FAILED')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logs and status reports."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(PostdexError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class ScanError(PostdexError):
    """The document directory could not be listed."""

    @classmethod
    def unreadable(cls, directory: str, reason: str) -> "ScanError":
        return cls(
            code=ErrorCode.SCAN_FAILED,
            message=f"Cannot list document directory {directory}: {reason}",
            retryable=True,
            details={"directory": directory, "reason": reason},
        )


class MetadataParseError(PostdexError):
    """A document's metadata block is not a valid YAML mapping."""

    @classmethod
    def malformed(cls, reason: str) -> "MetadataParseError":
        return cls(
            code=ErrorCode.METADATA_PARSE_ERROR,
            message=f"Malformed metadata block: {reason}",
            details={"reason": reason},
        )


class InternalError(PostdexError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
