"""Turn one raw document into a Record."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from postdex.core.errors import MetadataParseError
from postdex.index.models import (
    BROKEN_METADATA_TITLE,
    MISSING_METADATA_TITLE,
    Metadata,
    Record,
    SkippedFile,
    SkipReason,
    normalize_tag,
)
from postdex.index.parser import parse_metadata, split_front_matter
from postdex.index.scanner import parse_date_prefix, split_name

logger = structlog.get_logger()

BodyRenderer = Callable[[str], str]


def passthrough(body: str) -> str:
    return body


def normalize_tags(tags: list[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for tag in tags:
        key = normalize_tag(tag)
        if key:
            seen.setdefault(key, None)
    return tuple(seen)


def build_record(
    filename: str,
    text: str,
    *,
    flat: bool = False,
    render: BodyRenderer = passthrough,
) -> Record | SkippedFile:
    """Build a Record from a document, or report why it was skipped.

    The date comes from a ``YYYY-MM-DD-`` filename prefix when there is one
    (in either mode), otherwise from the ``date`` metadata field in flat mode.
    A malformed metadata block degrades the record instead of failing it.
    """
    stem, _ext = split_name(filename)
    body, block = split_front_matter(text)

    broken = False
    if block is None:
        metadata = Metadata()
    else:
        try:
            metadata = parse_metadata(block)
        except MetadataParseError as e:
            logger.warning("metadata_parse_failed", filename=filename, error=e.message)
            metadata = Metadata()
            broken = True

    prefixed = parse_date_prefix(stem)
    if prefixed is not None:
        date, identifier = prefixed
    elif flat and metadata.date is not None:
        date, identifier = metadata.date, stem
    else:
        logger.info("file_skipped", filename=filename, reason=SkipReason.NO_DATE.value)
        return SkippedFile(filename, SkipReason.NO_DATE)

    if broken:
        title = BROKEN_METADATA_TITLE
    else:
        title = metadata.title or MISSING_METADATA_TITLE

    return Record(
        identifier=identifier,
        title=title,
        tags=normalize_tags(metadata.tags),
        date=date,
        body=render(body),
        metadata=metadata,
        filename=filename,
    )
