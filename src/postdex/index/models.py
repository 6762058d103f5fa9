"""Data model for the document index.

Record
    One parsed document. Immutable.
Index
    The published, queryable structure. Built in one step from a complete
    record set by ``Index.build`` and never mutated afterwards; a reload
    replaces the whole object.

Position maps (``by_date_and_name`` and ``by_tag``) hold integer positions into
``ordered``. Both are always derived from the same ``ordered`` tuple.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any

MISSING_METADATA_TITLE = "!!! missing metadata !!!"
BROKEN_METADATA_TITLE = "!!! broken metadata !!!"

_EMPTY: Mapping[str, Any] = MappingProxyType({})


def normalize_tag(tag: str) -> str:
    """Case-fold a tag and join its words with hyphens ("Foo Bar" -> "foo-bar")."""
    return "-".join(tag.casefold().split())


def _coerce_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return _coerce_datetime(datetime.fromisoformat(value.strip()))
        except ValueError:
            return None
    return None


class Metadata(Mapping[str, Any]):
    """Read-only view of a parsed metadata block.

    Unknown keys are kept and passed through; ``title``, ``tags`` and ``date``
    are the typed accessors for the recognized ones.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data: Mapping[str, Any] = MappingProxyType(dict(data)) if data else _EMPTY

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Metadata({dict(self._data)!r})"

    @property
    def title(self) -> str | None:
        value = self._data.get("title")
        if value is None:
            return None
        return str(value)

    @property
    def tags(self) -> list[str]:
        """Raw tag strings. A bare string counts as a single tag."""
        value = self._data.get("tags")
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, Iterable):
            return [str(item) for item in value if item is not None]
        return [str(value)]

    @property
    def date(self) -> datetime | None:
        return _coerce_datetime(self._data.get("date"))


@dataclass(frozen=True, slots=True)
class Record:
    """One parsed document."""

    identifier: str
    title: str
    tags: tuple[str, ...]
    date: datetime
    body: str
    metadata: Metadata = field(default_factory=Metadata, compare=False)
    filename: str = ""


class SkipReason(Enum):
    """Why a candidate file produced no record."""

    BAD_EXTENSION = "bad_extension"
    BAD_NAME = "bad_name"
    NO_DATE = "no_date"
    UNREADABLE = "unreadable"
    BUILD_FAILED = "build_failed"


@dataclass(frozen=True, slots=True)
class SkippedFile:
    """A candidate that was left out of a reload cycle. Not an error."""

    filename: str
    reason: SkipReason
    detail: str | None = None


@dataclass
class ReloadStats:
    """Statistics from one reload cycle."""

    epoch: int
    files_scanned: int
    records_indexed: int
    records_degraded: int
    skipped: list[SkippedFile] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def files_skipped(self) -> int:
        return len(self.skipped)


def _slice(items: tuple[Any, ...], offset: int | None, count: int | None) -> tuple[Any, ...]:
    if offset is None:
        offset = 0
    if offset < 0 or offset >= len(items):
        return ()
    if count is None:
        return items[offset:]
    if count <= 0:
        return ()
    return items[offset : offset + count]


def _as_int(value: int | str) -> int | None:
    if isinstance(value, int):
        return value
    try:
        return int(value, 10)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True, slots=True)
class Index:
    """Published, immutable index over a complete record set."""

    ordered: tuple[Record, ...]
    by_date_and_name: Mapping[Any, Any]
    by_tag: Mapping[str, tuple[int, ...]]
    flat: bool = False

    @classmethod
    def empty(cls, *, flat: bool = False) -> Index:
        return cls(ordered=(), by_date_and_name=_EMPTY, by_tag=_EMPTY, flat=flat)

    @classmethod
    def build(cls, records: Iterable[Record], *, flat: bool = False) -> Index:
        """Sort records by date (newest first, stable) and derive both lookup maps."""
        ordered = tuple(sorted(records, key=lambda r: r.date, reverse=True))

        names: dict[Any, Any] = {}
        tags: dict[str, list[int]] = {}
        for position, record in enumerate(ordered):
            if flat:
                names[record.identifier] = position
            else:
                d = record.date
                day = names.setdefault(d.year, {}).setdefault(d.month - 1, {}).setdefault(d.day, {})
                day[record.identifier] = position
            for tag in record.tags:
                tags.setdefault(tag, []).append(position)

        return cls(
            ordered=ordered,
            by_date_and_name=_freeze(names),
            by_tag=MappingProxyType({tag: tuple(p) for tag, p in tags.items()}),
            flat=flat,
        )

    # Queries

    def post_count(self) -> int:
        return len(self.ordered)

    def post_count_for_tag(self, tag: str) -> int:
        return len(self.by_tag.get(tag, ()))

    def posts(self, offset: int | None = None, count: int | None = None) -> list[Record]:
        return list(_slice(self.ordered, offset, count))

    def posts_for_tag(
        self, tag: str, offset: int | None = None, count: int | None = None
    ) -> list[Record]:
        positions = _slice(self.by_tag.get(tag, ()), offset, count)
        return [self.ordered[p] for p in positions]

    def post(self, year: int | str, month: int | str, day: int | str, name: str) -> Record | None:
        """Look up a record by date and identifier. ``month`` is 1-based."""
        if self.flat:
            return None
        y, m, d = _as_int(year), _as_int(month), _as_int(day)
        if y is None or m is None or d is None:
            return None
        position = self.by_date_and_name.get(y, _EMPTY).get(m - 1, _EMPTY).get(d, _EMPTY).get(name)
        if position is None:
            return None
        return self.ordered[position]

    def post_by_name(self, name: str) -> Record | None:
        if not self.flat:
            return None
        position = self.by_date_and_name.get(name)
        if position is None:
            return None
        return self.ordered[position]

    def tags(self) -> dict[str, int]:
        """Known tags with their record counts, in first-seen order."""
        return {tag: len(positions) for tag, positions in self.by_tag.items()}


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    return value
