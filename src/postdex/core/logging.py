"""Structured logging for postdex.

Every line logged while a reload cycle runs carries that cycle's ``cycle_id``,
including lines from the parse pool threads (the coordinator copies the
context into each task). Output goes through stdlib handlers so file handles
are managed by ``logging``; each configured output gets its own format and
level.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

if TYPE_CHECKING:
    from postdex.config.models import LoggingConfig, LogOutputConfig

_cycle_id: ContextVar[str | None] = ContextVar("cycle_id", default=None)


def get_cycle_id() -> str | None:
    return _cycle_id.get()


def set_cycle_id(cycle_id: str | None = None) -> str:
    """Start a reload cycle scope. Generates a short id when none is given."""
    cid = cycle_id or uuid4().hex[:12]
    _cycle_id.set(cid)
    return cid


def clear_cycle_id() -> None:
    _cycle_id.set(None)


def _stamp_cycle_id(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    cid = _cycle_id.get()
    if cid is not None:
        event_dict.setdefault("cycle_id", cid)
    return event_dict


def _level(name: str | None, fallback: int) -> int:
    if name is None:
        return fallback
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else fallback


def _open_handler(destination: str) -> logging.Handler:
    if destination in ("stderr", "stdout"):
        return logging.StreamHandler(getattr(sys, destination))
    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, mode="a", encoding="utf-8")


def _formatter_for(
    output: LogOutputConfig, pre_chain: list[structlog.types.Processor]
) -> logging.Formatter:
    renderer: structlog.types.Processor
    if output.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        tty = output.destination in ("stderr", "stdout") and getattr(
            sys, output.destination
        ).isatty()
        renderer = structlog.dev.ConsoleRenderer(colors=tty, pad_event_to=0)
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain)


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """Route structlog through stdlib logging, one handler per configured output.

    Args:
        config: Logging section of PostdexConfig. When given, ``json_format``
            and ``level`` are ignored.
        json_format: Single stderr output rendered as JSON lines.
        level: Level for the single stderr output.
    """
    from postdex.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level.upper(),  # type: ignore[arg-type]
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )

    root_level = _level(config.level, logging.INFO)
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
        _stamp_cycle_id,  # type: ignore[list-item]
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(root_level)

    for output in config.outputs:
        handler = _open_handler(output.destination)
        handler.setLevel(_level(output.level, root_level))
        handler.setFormatter(_formatter_for(output, pre_chain))
        root.addHandler(handler)

    # watchfiles logs every raw event at DEBUG
    logging.getLogger("watchfiles.main").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger  # type: ignore[no-any-return]
