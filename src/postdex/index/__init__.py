"""Document index: scanning, parsing, building and querying.

Public API::

    from postdex.index import ReloadCoordinator

    coordinator = ReloadCoordinator(Path("posts"))
    coordinator.initialize()
    latest = coordinator.posts(0, 5)
    tagged = coordinator.posts_for_tag("release")
    post = coordinator.post(2021, 1, 1, "hello")
"""

from postdex.index.builder import BodyRenderer, build_record, normalize_tags, passthrough
from postdex.index.models import (
    BROKEN_METADATA_TITLE,
    MISSING_METADATA_TITLE,
    Index,
    Metadata,
    Record,
    ReloadStats,
    SkippedFile,
    SkipReason,
    normalize_tag,
)
from postdex.index.ops import ReloadCoordinator, ReloadState, ReloadStatus
from postdex.index.parser import parse_document, parse_metadata, split_front_matter
from postdex.index.scanner import DEFAULT_EXTENSIONS, scan_directory

__all__ = [
    # Coordinator
    "ReloadCoordinator",
    "ReloadState",
    "ReloadStatus",
    # Models
    "Index",
    "Metadata",
    "Record",
    "ReloadStats",
    "SkippedFile",
    "SkipReason",
    "BROKEN_METADATA_TITLE",
    "MISSING_METADATA_TITLE",
    "normalize_tag",
    # Building blocks
    "BodyRenderer",
    "DEFAULT_EXTENSIONS",
    "build_record",
    "normalize_tags",
    "parse_document",
    "parse_metadata",
    "passthrough",
    "scan_directory",
    "split_front_matter",
]
