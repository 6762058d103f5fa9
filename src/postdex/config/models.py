"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (POSTDEX__SECTION__KEY)
3. YAML file passed to load_config()
4. Global YAML (~/.config/postdex/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    POSTDEX__<SECTION>__<KEY>=<VALUE>

Examples:
    POSTDEX__LOGGING__LEVEL=DEBUG
    POSTDEX__INDEX__FLAT=true
    POSTDEX__INDEX__WATCH=false
    POSTDEX__WATCHER__DEBOUNCE_SEC=1.0
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration."""

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        POSTDEX__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every skipped file.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class IndexConfig(BaseModel):
    """Document index configuration.

    Env vars:
        POSTDEX__INDEX__DIRECTORY: Directory holding the documents
        POSTDEX__INDEX__FLAT: Identify documents by filename, date them from metadata
        POSTDEX__INDEX__WATCH: Reload when the directory changes
        POSTDEX__INDEX__MAX_WORKERS: Parallel document parsers per reload
    """

    directory: str = Field(
        default="posts",
        description="Directory holding the documents. Relative paths resolve "
        "against the working directory.",
    )
    flat: bool = Field(
        default=False,
        description="Disable date-hierarchical indexing. Documents are identified by "
        "filename alone and dated from their 'date' metadata field.",
    )
    watch: bool = Field(
        default=True,
        description="Reload the index when the directory changes. When false the "
        "index is built once at startup.",
    )
    extensions: list[str] = Field(
        default_factory=lambda: [".md", ".markdown"],
        description="Recognized document extensions (case-insensitive).",
    )
    max_workers: int = Field(
        default=8,
        description="Parallel document parsers used by one reload cycle.",
    )

    @field_validator("extensions")
    @classmethod
    def validate_extensions(cls, v: list[str]) -> list[str]:
        normalized = []
        for ext in v:
            if not ext.startswith(".") or len(ext) < 2:
                raise ValueError(f"Extension must start with '.': {ext!r}")
            normalized.append(ext.lower())
        return normalized

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_workers must be at least 1, got {v}")
        return v


class WatcherConfig(BaseModel):
    """File watcher configuration.

    Env vars:
        POSTDEX__WATCHER__DEBOUNCE_SEC: Quiet window before triggering a reload
        POSTDEX__WATCHER__MAX_DEBOUNCE_WAIT_SEC: Upper bound on batching delay
        POSTDEX__WATCHER__POLL_INTERVAL_SEC: Polling interval on network mounts
    """

    debounce_sec: float = Field(
        default=0.5,
        description="Sliding quiet window before a batch of changes triggers a reload.",
    )
    max_debounce_wait_sec: float = Field(
        default=2.0,
        description="Maximum delay before a continuously changing directory is reloaded.",
    )
    poll_interval_sec: float = Field(
        default=1.0,
        description="mtime polling interval for cross-filesystem mounts where "
        "native notifications are unavailable.",
    )
    stop_timeout_sec: float = Field(
        default=2.0,
        description="File watcher shutdown timeout.",
    )


class PostdexConfig(BaseModel):
    """Root configuration for postdex."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
