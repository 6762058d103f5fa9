"""Front matter parsing.

A document may open with a YAML block fenced by ``---`` lines::

    ---
    title: Hello
    tags: [Release, Beta]
    ---
    Body text...

Anything that does not open with the fence is all body.
"""

from __future__ import annotations

import yaml

from postdex.core.errors import MetadataParseError
from postdex.index.models import Metadata

FRONT_MATTER_FENCE = "---"


def split_front_matter(text: str) -> tuple[str, str | None]:
    """Split raw text into ``(body, metadata_block)``.

    Carriage returns are stripped first. ``metadata_block`` is None when the
    first line is not the fence. An unterminated block swallows the rest of
    the document.
    """
    lines = text.replace("\r", "").split("\n")
    if lines[0] != FRONT_MATTER_FENCE:
        return "\n".join(lines), None

    for i in range(1, len(lines)):
        if lines[i] == FRONT_MATTER_FENCE:
            return "\n".join(lines[i + 1 :]), "\n".join(lines[1:i])
    return "", "\n".join(lines[1:])


def parse_metadata(block: str) -> Metadata:
    """Parse a metadata block. Raises MetadataParseError unless it is a YAML mapping.

    PyYAML raises ValueError/TypeError from its constructors for scalars it
    recognizes but cannot build (``2021-02-30``, ``!!int abc``).
    """
    try:
        data = yaml.safe_load(block)
    except (yaml.YAMLError, ValueError, TypeError) as e:
        raise MetadataParseError.malformed(str(e)) from e
    if data is None:
        return Metadata()
    if not isinstance(data, dict):
        raise MetadataParseError.malformed(f"expected a mapping, got {type(data).__name__}")
    return Metadata({str(k): v for k, v in data.items()})


def parse_document(text: str) -> tuple[str, Metadata]:
    """Return ``(body, metadata)``; metadata is empty when there is no block."""
    body, block = split_front_matter(text)
    if block is None:
        return body, Metadata()
    return body, parse_metadata(block)
