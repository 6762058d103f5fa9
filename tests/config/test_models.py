"""Tests for config/models.py module.

Covers:
- LogOutputConfig model
- LoggingConfig model
- IndexConfig model
- WatcherConfig model
- PostdexConfig root model
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from postdex.config.models import (
    IndexConfig,
    LoggingConfig,
    LogOutputConfig,
    PostdexConfig,
    WatcherConfig,
)


class TestLogOutputConfig:
    """Tests for LogOutputConfig model."""

    def test_defaults(self) -> None:
        """Default values."""
        config = LogOutputConfig()
        assert config.format == "console"
        assert config.destination == "stderr"
        assert config.level is None

    @pytest.mark.parametrize("destination", ["stderr", "stdout"])
    def test_stream_destinations(self, destination: str) -> None:
        """Standard streams are valid destinations."""
        assert LogOutputConfig(destination=destination).destination == destination

    def test_absolute_file_destination(self, tmp_path) -> None:
        """Absolute file paths are accepted."""
        path = str(tmp_path / "postdex.log")
        assert LogOutputConfig(destination=path).destination == path

    def test_relative_file_destination_rejected(self) -> None:
        """Relative file paths are rejected."""
        with pytest.raises(ValidationError):
            LogOutputConfig(destination="logs/postdex.log")


class TestLoggingConfig:
    """Tests for LoggingConfig model."""

    def test_defaults(self) -> None:
        """INFO to a single console output."""
        config = LoggingConfig()
        assert config.level == "INFO"
        assert len(config.outputs) == 1

    def test_invalid_level(self) -> None:
        """Unknown levels are rejected."""
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")  # type: ignore[arg-type]


class TestIndexConfig:
    """Tests for IndexConfig model."""

    def test_defaults(self) -> None:
        """Hierarchical mode with watching on."""
        config = IndexConfig()
        assert config.directory == "posts"
        assert config.flat is False
        assert config.watch is True
        assert config.extensions == [".md", ".markdown"]
        assert config.max_workers == 8

    def test_extensions_lowercased(self) -> None:
        """Extensions are normalized to lower case."""
        assert IndexConfig(extensions=[".MD", ".Txt"]).extensions == [".md", ".txt"]

    @pytest.mark.parametrize("ext", ["md", ".", ""])
    def test_extension_needs_leading_dot(self, ext: str) -> None:
        """Extensions must look like '.md'."""
        with pytest.raises(ValidationError):
            IndexConfig(extensions=[ext])

    def test_max_workers_must_be_positive(self) -> None:
        """Zero workers is invalid."""
        with pytest.raises(ValidationError):
            IndexConfig(max_workers=0)


class TestWatcherConfig:
    """Tests for WatcherConfig model."""

    def test_defaults(self) -> None:
        """Debounce window is shorter than the max wait."""
        config = WatcherConfig()
        assert 0 < config.debounce_sec < config.max_debounce_wait_sec
        assert config.poll_interval_sec > 0


class TestPostdexConfig:
    """Tests for the root model."""

    def test_sections_present(self) -> None:
        """All sections have defaults."""
        config = PostdexConfig()
        assert isinstance(config.index, IndexConfig)
        assert isinstance(config.watcher, WatcherConfig)
        assert isinstance(config.logging, LoggingConfig)

    def test_nested_dict_input(self) -> None:
        """Sections can be given as plain dicts."""
        config = PostdexConfig.model_validate({"index": {"flat": True, "watch": False}})
        assert config.index.flat is True
        assert config.index.watch is False
