"""Shared fixtures for index tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

WritePost = Callable[..., Path]


def render_post(
    title: str | None = None,
    tags: list[str] | None = None,
    date: str | None = None,
    body: str = "Body text.",
) -> str:
    """Render a document with a front matter block (omitted when no fields are given)."""
    fields: list[str] = []
    if title is not None:
        fields.append(f"title: {title}")
    if tags is not None:
        fields.append(f"tags: [{', '.join(tags)}]")
    if date is not None:
        fields.append(f"date: {date}")
    if not fields:
        return body
    return "---\n" + "\n".join(fields) + "\n---\n" + body


@pytest.fixture
def posts_dir(tmp_path: Path) -> Path:
    """Empty document directory."""
    directory = tmp_path / "posts"
    directory.mkdir()
    return directory


@pytest.fixture
def write_post(posts_dir: Path) -> WritePost:
    """Write a document into posts_dir: write_post(filename, title=..., tags=..., date=...)."""

    def _write(filename: str, raw: str | None = None, **fields: object) -> Path:
        path = posts_dir / filename
        path.write_text(raw if raw is not None else render_post(**fields))  # type: ignore[arg-type]
        return path

    return _write


@pytest.fixture(name="render_post")
def render_post_fixture() -> Callable[..., str]:
    """The render_post helper, for tests that build text without touching disk."""
    return render_post
