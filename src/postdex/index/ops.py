"""High-level orchestration of the reload-and-index engine.

This module implements the ReloadCoordinator - the entry point for reloads
and queries. It enforces the serialization invariants:

- Only ONE reload cycle runs at a time. A reload requested while a cycle is
  running is coalesced: however many arrive, exactly one follow-up cycle runs
  after the current one publishes.
- The published Index is replaced, never mutated. Readers grab the current
  reference and keep a consistent snapshot for as long as they hold it.

One cycle: SCANNING -> AWAITING_PARSES -> PUBLISHING -> IDLE
"""

from __future__ import annotations

import contextvars
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from postdex.core.errors import InternalError, PostdexError, ScanError
from postdex.core.logging import clear_cycle_id, set_cycle_id
from postdex.index.builder import BodyRenderer, build_record, passthrough
from postdex.index.models import (
    BROKEN_METADATA_TITLE,
    Index,
    Record,
    ReloadStats,
    SkippedFile,
    SkipReason,
)
from postdex.index.scanner import DEFAULT_EXTENSIONS, scan_directory

if TYPE_CHECKING:
    from postdex.config.models import IndexConfig

logger = structlog.get_logger()


class ReloadState(Enum):
    """Reload coordinator state."""

    IDLE = "idle"
    SCANNING = "scanning"
    AWAITING_PARSES = "awaiting_parses"
    PUBLISHING = "publishing"


@dataclass
class ReloadStatus:
    """Current coordinator status."""

    state: ReloadState
    epoch: int
    pending: bool
    last_stats: ReloadStats | None = None
    last_error: str | None = None


class ReloadCoordinator:
    """
    Scan, parse and publish with serialization guarantees.

    SERIALIZATION:
    - _state_lock guards the running/pending flags; one cycle at a time
    - _publish_cond guards the published reference and epoch counter, held
      only for the swap

    Usage::

        coordinator = ReloadCoordinator(Path("posts"))
        coordinator.initialize()          # first cycle, ScanError is fatal

        coordinator.posts(0, 10)          # reads the published snapshot
        coordinator.reload()              # later cycles, ScanError is logged
        coordinator.close()
    """

    def __init__(
        self,
        directory: Path,
        *,
        flat: bool = False,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        max_workers: int = 8,
        render: BodyRenderer = passthrough,
    ) -> None:
        self.directory = directory
        self.flat = flat
        self.extensions = tuple(e.lower() for e in extensions)
        self.render = render

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="postdex-parse",
        )

        self._state_lock = threading.Lock()
        self._state = ReloadState.IDLE
        self._running = False
        self._pending = False

        self._publish_cond = threading.Condition(threading.Lock())
        self._index = Index.empty(flat=flat)
        self._epoch = 0

        self._last_stats: ReloadStats | None = None
        self._last_error: str | None = None
        self._on_complete: Callable[[ReloadStats], None] | None = None

    @classmethod
    def from_config(
        cls, config: IndexConfig, *, render: BodyRenderer = passthrough
    ) -> ReloadCoordinator:
        return cls(
            Path(config.directory).expanduser(),
            flat=config.flat,
            extensions=config.extensions,
            max_workers=config.max_workers,
            render=render,
        )

    # Reload

    def initialize(self) -> ReloadStats:
        """Run the first cycle. An unreadable directory is fatal here.

        Raises:
            ScanError: If the directory cannot be listed.
            InternalError: If a reload is already running.
        """
        stats = self._run_exclusive(strict=True)
        if stats is None:
            raise InternalError.unexpected(
                "initialize() called while a reload is running", directory=str(self.directory)
            )
        return stats

    def reload(self) -> ReloadStats | None:
        """Run a reload cycle, or coalesce into the one already running.

        Returns the stats of the last cycle this call ran, or None when the
        request was coalesced or the directory could not be listed (the
        previous Index stays published).
        """
        return self._run_exclusive(strict=False)

    def _run_exclusive(self, *, strict: bool) -> ReloadStats | None:
        with self._state_lock:
            if self._running:
                self._pending = True
                logger.debug("reload_coalesced")
                return None
            self._running = True
            self._pending = False

        stats: ReloadStats | None = None
        published: ReloadStats | None = None
        strict_error: ScanError | None = None
        caller_strict = strict
        try:
            while True:
                try:
                    stats = published = self._run_cycle()
                except ScanError as e:
                    self._last_error = str(e)
                    logger.error("scan_failed", error=e.message, directory=str(self.directory))
                    if strict:
                        strict_error = e
                    stats = None
                # Only the caller's own cycle is strict; follow-ups serve reload().
                strict = False

                # Checking pending and releasing the cycle is one critical
                # section so no request lands between them unserved.
                with self._state_lock:
                    if not self._pending:
                        self._running = False
                        break
                    self._pending = False
                logger.info("reload_follow_up")
        except BaseException:
            with self._state_lock:
                self._running = False
                self._state = ReloadState.IDLE
            raise

        # A strict first cycle fails the caller unless a follow-up published.
        if caller_strict:
            if published is None and strict_error is not None:
                raise strict_error
            return published
        return stats

    def _set_state(self, state: ReloadState) -> None:
        with self._state_lock:
            self._state = state
        logger.debug("reload_state", state=state.value)

    def _run_cycle(self) -> ReloadStats:
        set_cycle_id()
        start_time = time.monotonic()
        try:
            self._set_state(ReloadState.SCANNING)
            names = scan_directory(self.directory, flat=self.flat, extensions=self.extensions)
            logger.info("reload_started", directory=str(self.directory), candidates=len(names))

            # Each task gets its own context copy so log lines keep the cycle id.
            self._set_state(ReloadState.AWAITING_PARSES)
            futures: list[Future[Record | SkippedFile]] = [
                self._executor.submit(contextvars.copy_context().run, self._load_one, name)
                for name in names
            ]
            wait(futures)

            records: list[Record] = []
            skipped: list[SkippedFile] = []
            for future in futures:
                result = future.result()
                if isinstance(result, SkippedFile):
                    skipped.append(result)
                else:
                    records.append(result)

            self._set_state(ReloadState.PUBLISHING)
            index = Index.build(records, flat=self.flat)
            epoch = self._publish(index)

            stats = ReloadStats(
                epoch=epoch,
                files_scanned=len(names),
                records_indexed=len(records),
                records_degraded=sum(1 for r in records if r.title == BROKEN_METADATA_TITLE),
                skipped=skipped,
                duration_seconds=time.monotonic() - start_time,
            )
            self._last_stats = stats
            self._last_error = None
            logger.info(
                "reload_published",
                epoch=epoch,
                records=stats.records_indexed,
                skipped=stats.files_skipped,
                degraded=stats.records_degraded,
                duration=round(stats.duration_seconds, 3),
            )
        finally:
            self._set_state(ReloadState.IDLE)
            clear_cycle_id()

        if self._on_complete is not None:
            self._on_complete(stats)
        return stats

    def _load_one(self, filename: str) -> Record | SkippedFile:
        """Read and build one document. Never raises."""
        try:
            text = (self.directory / filename).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("file_unreadable", filename=filename, error=str(e))
            return SkippedFile(filename, SkipReason.UNREADABLE, str(e))

        try:
            return build_record(filename, text, flat=self.flat, render=self.render)
        except Exception as e:
            logger.exception("record_build_failed", filename=filename)
            detail = e.message if isinstance(e, PostdexError) else str(e)
            return SkippedFile(filename, SkipReason.BUILD_FAILED, detail)

    def _publish(self, index: Index) -> int:
        with self._publish_cond:
            self._index = index
            self._epoch += 1
            self._publish_cond.notify_all()
            return self._epoch

    # Epochs and status

    def get_current_epoch(self) -> int:
        """Number of indexes published so far (0 before the first)."""
        with self._publish_cond:
            return self._epoch

    def await_epoch(self, target_epoch: int, timeout_seconds: float | None = 5.0) -> bool:
        """Block until ``target_epoch`` is published. Returns False on timeout."""
        with self._publish_cond:
            return self._publish_cond.wait_for(
                lambda: self._epoch >= target_epoch, timeout=timeout_seconds
            )

    def set_on_complete(self, callback: Callable[[ReloadStats], None]) -> None:
        """Set callback invoked (on the reloading thread) after each publish."""
        self._on_complete = callback

    @property
    def status(self) -> ReloadStatus:
        with self._state_lock:
            state, pending = self._state, self._pending
        return ReloadStatus(
            state=state,
            epoch=self.get_current_epoch(),
            pending=pending,
            last_stats=self._last_stats,
            last_error=self._last_error,
        )

    def close(self) -> None:
        """Shut down the parse pool. Waits for in-flight parses."""
        self._executor.shutdown(wait=True)

    # Queries (always against the currently published snapshot)

    @property
    def index(self) -> Index:
        return self._index

    def post_count(self) -> int:
        return self._index.post_count()

    def post_count_for_tag(self, tag: str) -> int:
        return self._index.post_count_for_tag(tag)

    def posts(self, offset: int | None = None, count: int | None = None) -> list[Record]:
        return self._index.posts(offset, count)

    def posts_for_tag(
        self, tag: str, offset: int | None = None, count: int | None = None
    ) -> list[Record]:
        return self._index.posts_for_tag(tag, offset, count)

    def post(self, year: int | str, month: int | str, day: int | str, name: str) -> Record | None:
        return self._index.post(year, month, day, name)

    def post_by_name(self, name: str) -> Record | None:
        return self._index.post_by_name(name)

    def tags(self) -> dict[str, int]:
        return self._index.tags()
