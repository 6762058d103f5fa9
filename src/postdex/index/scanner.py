"""Directory listing and filename conventions."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

import structlog

from postdex.core.errors import ScanError
from postdex.index.models import SkipReason

logger = structlog.get_logger()

DEFAULT_EXTENSIONS: tuple[str, ...] = (".md", ".markdown")

# YYYY-MM-DD-<name>
DATE_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})-(.+)$")


def split_name(filename: str) -> tuple[str, str]:
    """Split a filename into ``(stem, extension)`` at the last dot."""
    stem, dot, ext = filename.rpartition(".")
    if not dot or not stem:
        return filename, ""
    return stem, f".{ext}"


def parse_date_prefix(stem: str) -> tuple[datetime, str] | None:
    """Return ``(date, name)`` for a ``YYYY-MM-DD-name`` stem, or None.

    A prefix that is not a real calendar date does not count.
    """
    match = DATE_PREFIX_RE.match(stem)
    if match is None:
        return None
    year, month, day, name = match.groups()
    try:
        return datetime(int(year), int(month), int(day)), name
    except ValueError:
        return None


def check_name(filename: str, *, flat: bool, extensions: Iterable[str]) -> SkipReason | None:
    """Return why ``filename`` is not a candidate, or None if it is."""
    stem, ext = split_name(filename)
    if not ext or ext.lower() not in extensions:
        return SkipReason.BAD_EXTENSION
    if not flat and DATE_PREFIX_RE.match(stem) is None:
        return SkipReason.BAD_NAME
    return None


def scan_directory(
    directory: Path,
    *,
    flat: bool = False,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
) -> list[str]:
    """List candidate document filenames in ``directory``, sorted by name.

    Raises:
        ScanError: If the directory cannot be listed.
    """
    exts = frozenset(e.lower() for e in extensions)
    try:
        with os.scandir(directory) as entries:
            names = sorted(entry.name for entry in entries if entry.is_file())
    except OSError as e:
        raise ScanError.unreadable(str(directory), str(e)) from e

    candidates: list[str] = []
    for name in names:
        reason = check_name(name, flat=flat, extensions=exts)
        if reason is not None:
            logger.debug("file_skipped", filename=name, reason=reason.value)
            continue
        candidates.append(name)
    return candidates
