"""Tests for the ReloadCoordinator: reload cycles, publishing and coalescing."""

from __future__ import annotations

import shutil
import threading
from collections.abc import Callable, Generator
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from postdex.core.errors import InternalError, ScanError
from postdex.index.models import (
    BROKEN_METADATA_TITLE,
    MISSING_METADATA_TITLE,
    Index,
    ReloadStats,
    SkipReason,
)
from postdex.index.ops import ReloadCoordinator, ReloadState

WritePost = Callable[..., Path]
MakeCoordinator = Callable[..., ReloadCoordinator]


@pytest.fixture
def make_coordinator(posts_dir: Path) -> Generator[MakeCoordinator, None, None]:
    """Factory for coordinators over posts_dir; shuts their pools down afterwards."""
    created: list[ReloadCoordinator] = []

    def _make(**kwargs: object) -> ReloadCoordinator:
        coordinator = ReloadCoordinator(posts_dir, **kwargs)  # type: ignore[arg-type]
        created.append(coordinator)
        return coordinator

    yield _make
    for coordinator in created:
        coordinator.close()


def _assert_consistent(index: Index) -> None:
    dates = [r.date for r in index.ordered]
    assert dates == sorted(dates, reverse=True)
    for positions in index.by_tag.values():
        assert all(0 <= p < len(index.ordered) for p in positions)


class TestScenarios:
    """End-to-end reload scenarios."""

    def test_given_single_post_when_initialized_then_found_by_date_and_name(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """A dated post is reachable through the date hierarchy."""
        # Given
        write_post("2021-01-01-hello.md", title="Hello")
        coordinator = make_coordinator()

        # When
        coordinator.initialize()

        # Then
        record = coordinator.post(2021, 1, 1, "hello")
        assert record is not None
        assert record.title == "Hello"
        assert coordinator.post_count_for_tag("anything") == 0
        assert coordinator.posts_for_tag("anything") == []

    def test_given_two_dates_when_paged_then_newest_first(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """posts(0, 1) returns the most recent record."""
        write_post("2021-01-01-january.md", title="January")
        write_post("2021-02-01-february.md", title="February")
        coordinator = make_coordinator()

        coordinator.initialize()

        assert [r.identifier for r in coordinator.posts(0, 1)] == ["february"]

    def test_wrong_extension_is_excluded(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """Files without a document extension never reach the index."""
        write_post("notes.txt", title="Notes")
        write_post("2021-01-01-real.md", title="Real")
        coordinator = make_coordinator()

        stats = coordinator.initialize()

        assert coordinator.post_count() == 1
        assert stats.files_scanned == 1

    def test_missing_metadata_still_publishes(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """A post without front matter is indexed with the sentinel title."""
        write_post("2021-01-01-bare.md", raw="no front matter here")
        coordinator = make_coordinator()

        coordinator.initialize()

        record = coordinator.post(2021, 1, 1, "bare")
        assert record is not None
        assert record.title == MISSING_METADATA_TITLE
        assert record.tags == ()
        assert coordinator.get_current_epoch() == 1

    def test_flat_mode_tags_and_metadata_date(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """Flat mode dates from metadata and indexes normalized tags."""
        write_post("launch.md", title="Launch", date="2022-03-03", tags=["Release", "Beta"])
        coordinator = make_coordinator(flat=True)

        coordinator.initialize()

        assert [r.identifier for r in coordinator.posts_for_tag("release")] == ["launch"]
        assert [r.identifier for r in coordinator.posts_for_tag("beta")] == ["launch"]
        record = coordinator.post_by_name("launch")
        assert record is not None
        assert record.date == datetime(2022, 3, 3)

    def test_broken_metadata_degrades_one_record(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """A malformed block does not stop the other files from publishing."""
        write_post("2021-01-01-broken.md", raw="---\ntitle: [oops\n---\nbody")
        write_post("2021-01-02-fine.md", title="Fine", tags=["ok"])
        coordinator = make_coordinator()

        stats = coordinator.initialize()

        assert stats.records_indexed == 2
        assert stats.records_degraded == 1
        broken = coordinator.post(2021, 1, 1, "broken")
        assert broken is not None
        assert broken.title == BROKEN_METADATA_TITLE
        assert coordinator.post_count_for_tag("ok") == 1

    def test_unconstructible_metadata_value_degrades_record(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """An impossible metadata date keeps the record with the filename date."""
        # Given
        write_post("2021-01-01-x.md", raw="---\ntitle: Hi\ndate: 2021-02-30\n---\n")
        coordinator = make_coordinator()

        # When
        stats = coordinator.initialize()

        # Then
        assert stats.skipped == []
        assert stats.records_degraded == 1
        record = coordinator.post(2021, 1, 1, "x")
        assert record is not None
        assert record.title == BROKEN_METADATA_TITLE


class TestReloadCycle:
    """Cycle bookkeeping and failure handling."""

    def test_reload_picks_up_changes(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """A reload publishes a fresh index reflecting the directory."""
        write_post("2021-01-01-a.md", title="A")
        coordinator = make_coordinator()
        coordinator.initialize()
        before = coordinator.index

        write_post("2021-01-02-b.md", title="B", tags=["new"])
        stats = coordinator.reload()

        assert stats is not None
        assert stats.epoch == 2
        assert coordinator.post_count() == 2
        assert coordinator.post_count_for_tag("new") == 1
        # Old snapshot is untouched
        assert before.post_count() == 1

    def test_reload_of_unchanged_directory_is_idempotent(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """Two reloads of the same files publish equal content."""
        write_post("2021-01-01-a.md", title="A", tags=["x"])
        write_post("2021-01-01-b.md", title="B", tags=["x", "y"])
        write_post("2020-06-01-c.md", title="C")
        coordinator = make_coordinator()
        coordinator.initialize()
        first = coordinator.index

        coordinator.reload()
        second = coordinator.index

        assert first is not second
        assert first.ordered == second.ordered
        assert dict(first.by_tag) == dict(second.by_tag)

    def test_equal_dates_keep_scan_order(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """Same-day posts keep filename order."""
        write_post("2021-01-01-b.md", title="B")
        write_post("2021-01-01-a.md", title="A")
        write_post("2021-01-01-c.md", title="C")
        coordinator = make_coordinator()

        coordinator.initialize()

        assert [r.identifier for r in coordinator.posts()] == ["a", "b", "c"]
        _assert_consistent(coordinator.index)

    def test_missing_directory_is_fatal_at_startup(self, tmp_path: Path) -> None:
        """initialize() propagates ScanError."""
        coordinator = ReloadCoordinator(tmp_path / "missing")
        try:
            with pytest.raises(ScanError):
                coordinator.initialize()
            assert coordinator.status.state == ReloadState.IDLE
        finally:
            coordinator.close()

    def test_scan_failure_on_reload_keeps_previous_index(
        self, posts_dir: Path, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """A later listing failure is logged and the old index stays live."""
        # Given
        write_post("2021-01-01-a.md", title="A")
        coordinator = make_coordinator()
        coordinator.initialize()
        published = coordinator.index

        # When
        shutil.rmtree(posts_dir)
        stats = coordinator.reload()

        # Then
        assert stats is None
        assert coordinator.index is published
        assert coordinator.get_current_epoch() == 1
        status = coordinator.status
        assert status.last_error is not None
        assert "SCAN_FAILED" in status.last_error
        assert status.state == ReloadState.IDLE

    def test_unreadable_file_is_skipped(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """A file that vanishes between listing and reading is skipped."""
        write_post("2021-01-01-real.md", title="Real")
        coordinator = make_coordinator()

        with patch(
            "postdex.index.ops.scan_directory",
            return_value=["2021-01-01-real.md", "2021-01-02-ghost.md"],
        ):
            stats = coordinator.initialize()

        assert stats.records_indexed == 1
        assert [(s.filename, s.reason) for s in stats.skipped] == [
            ("2021-01-02-ghost.md", SkipReason.UNREADABLE)
        ]

    def test_render_failure_skips_only_that_file(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """An exception while building one record does not abort the cycle."""
        write_post("2021-01-01-good.md", title="Good", body="fine")
        write_post("2021-01-02-bad.md", title="Bad", body="explode")

        def render(body: str) -> str:
            if body == "explode":
                raise RuntimeError("renderer blew up")
            return body

        coordinator = make_coordinator(render=render)

        stats = coordinator.initialize()

        assert coordinator.post_count() == 1
        assert stats.skipped[0].reason == SkipReason.BUILD_FAILED
        assert stats.skipped[0].detail == "renderer blew up"

    def test_on_complete_receives_stats(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """The completion callback fires once per publish."""
        write_post("2021-01-01-a.md", title="A")
        coordinator = make_coordinator()
        seen: list[ReloadStats] = []
        coordinator.set_on_complete(seen.append)

        coordinator.initialize()
        coordinator.reload()

        assert [s.epoch for s in seen] == [1, 2]

    def test_await_epoch(self, write_post: WritePost, make_coordinator: MakeCoordinator) -> None:
        """await_epoch returns once the epoch is published, False on timeout."""
        write_post("2021-01-01-a.md", title="A")
        coordinator = make_coordinator()

        assert coordinator.await_epoch(1, timeout_seconds=0.01) is False
        coordinator.initialize()
        assert coordinator.await_epoch(1, timeout_seconds=0.01) is True

    def test_empty_before_initialize(self, make_coordinator: MakeCoordinator) -> None:
        """Queries before the first publish see an empty index."""
        coordinator = make_coordinator()
        assert coordinator.post_count() == 0
        assert coordinator.posts() == []
        assert coordinator.status.epoch == 0


class TestConcurrency:
    """Single-writer serialization and request coalescing."""

    def test_given_running_cycle_when_more_requests_then_one_follow_up(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """Requests during a cycle coalesce into exactly one follow-up cycle."""
        # Given
        write_post("2021-01-01-a.md", title="A")
        entered = threading.Event()
        gate = threading.Event()

        def render(body: str) -> str:
            entered.set()
            gate.wait(5.0)
            return body

        coordinator = make_coordinator(render=render)
        published: list[ReloadStats] = []
        coordinator.set_on_complete(published.append)

        first = threading.Thread(target=coordinator.reload)
        first.start()
        assert entered.wait(5.0)

        # When
        results = [coordinator.reload() for _ in range(5)]
        pending = coordinator.status.pending
        gate.set()
        first.join(5.0)

        # Then
        assert results == [None] * 5
        assert pending is True
        assert [s.epoch for s in published] == [1, 2]
        assert coordinator.status.pending is False
        assert coordinator.status.state == ReloadState.IDLE

    def test_initialize_while_reloading_raises(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """initialize() refuses to coalesce silently."""
        write_post("2021-01-01-a.md", title="A")
        entered = threading.Event()
        gate = threading.Event()

        def render(body: str) -> str:
            entered.set()
            gate.wait(5.0)
            return body

        coordinator = make_coordinator(render=render)
        worker = threading.Thread(target=coordinator.reload)
        worker.start()
        assert entered.wait(5.0)
        try:
            with pytest.raises(InternalError):
                coordinator.initialize()
        finally:
            gate.set()
            worker.join(5.0)

    def test_given_initialize_running_when_follow_up_scan_fails_then_initialize_succeeds(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """A coalesced follow-up is lenient: its scan failure is logged, not raised."""
        # Given
        write_post("2021-01-01-a.md", title="A")
        entered = threading.Event()
        gate = threading.Event()
        calls: list[Path] = []

        def scan(directory: Path, **_kwargs: object) -> list[str]:
            calls.append(directory)
            if len(calls) == 1:
                entered.set()
                gate.wait(5.0)
                return ["2021-01-01-a.md"]
            raise ScanError.unreadable(str(directory), "gone")

        coordinator = make_coordinator()
        result: dict[str, ReloadStats] = {}

        # When
        with patch("postdex.index.ops.scan_directory", side_effect=scan):
            worker = threading.Thread(
                target=lambda: result.update(stats=coordinator.initialize())
            )
            worker.start()
            assert entered.wait(5.0)
            assert coordinator.reload() is None
            gate.set()
            worker.join(5.0)

        # Then
        assert len(calls) == 2
        assert result["stats"].epoch == 1
        assert coordinator.post_count() == 1
        last_error = coordinator.status.last_error
        assert last_error is not None
        assert "SCAN_FAILED" in last_error

    def test_given_failing_first_cycle_when_reload_coalesced_then_follow_up_runs(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """A reload requested during a failed startup cycle is still served."""
        # Given
        write_post("2021-01-01-a.md", title="A")
        entered = threading.Event()
        gate = threading.Event()
        calls: list[Path] = []

        def scan(directory: Path, **_kwargs: object) -> list[str]:
            calls.append(directory)
            if len(calls) == 1:
                entered.set()
                gate.wait(5.0)
                raise ScanError.unreadable(str(directory), "not mounted yet")
            return ["2021-01-01-a.md"]

        coordinator = make_coordinator()
        result: dict[str, ReloadStats] = {}

        # When
        with patch("postdex.index.ops.scan_directory", side_effect=scan):
            worker = threading.Thread(
                target=lambda: result.update(stats=coordinator.initialize())
            )
            worker.start()
            assert entered.wait(5.0)
            assert coordinator.reload() is None
            gate.set()
            worker.join(5.0)

        # Then
        assert len(calls) == 2
        assert result["stats"].epoch == 1
        assert coordinator.post_count() == 1
        assert coordinator.status.pending is False

    def test_concurrent_triggers_publish_consistent_indexes(
        self, write_post: WritePost, make_coordinator: MakeCoordinator
    ) -> None:
        """Many simultaneous triggers never publish a mixed or partial index."""
        # Given
        for day in range(1, 21):
            write_post(f"2021-01-{day:02d}-post{day}.md", title=f"P{day}", tags=["all"])
        coordinator = make_coordinator(max_workers=4)
        snapshots: list[Index] = []
        coordinator.set_on_complete(lambda _stats: snapshots.append(coordinator.index))
        barrier = threading.Barrier(8)

        def trigger() -> None:
            barrier.wait()
            coordinator.reload()

        # When
        threads = [threading.Thread(target=trigger) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10.0)

        # Then
        assert 1 <= len(snapshots) <= 8
        for index in snapshots:
            assert index.post_count() == 20
            assert index.post_count_for_tag("all") == 20
            _assert_consistent(index)
        assert coordinator.status.state == ReloadState.IDLE
