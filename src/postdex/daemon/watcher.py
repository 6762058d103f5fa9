"""File watcher using watchfiles for async filesystem monitoring.

Design:
- One non-recursive watch on the document directory
- Only changes to files with a recognized document extension are queued
- Falls back to mtime polling for cross-filesystem mounts (WSL /mnt/*)
- Sliding-window debounce batches editor save bursts into one callback
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from watchfiles import Change, awatch

from postdex.index.scanner import DEFAULT_EXTENSIONS, split_name

logger = structlog.get_logger()

# Debouncing configuration
DEBOUNCE_WINDOW_SEC = 0.5  # Sliding window for batching rapid changes
MAX_DEBOUNCE_WAIT_SEC = 2.0  # Maximum wait before forcing flush


def _is_cross_filesystem(path: Path) -> bool:
    """Detect if path is on a cross-filesystem mount (WSL /mnt/*, network drives, etc.)."""
    path_str = str(path.resolve())
    # WSL accessing Windows filesystem: /mnt/c/, /mnt/d/, etc.
    if (
        path_str.startswith("/mnt/")
        and len(path_str) > 6
        and path_str[5].isalpha()
        and path_str[6] == "/"
    ):
        return True
    return path_str.startswith(("/run/user/", "/media/", "/net/"))


@dataclass
class FileWatcher:
    """
    Async watcher for the document directory with sliding-window debouncing.

    - Changes are buffered until ``debounce_window`` of quiet time
    - ``max_debounce_wait`` caps the delay under a continuous stream of changes
    - ``on_change`` receives the batch of changed filenames; it is a signal,
      the reload rescans the whole directory anyway
    """

    directory: Path
    on_change: Callable[[list[Path]], None]
    extensions: Iterable[str] = DEFAULT_EXTENSIONS
    poll_interval: float = 1.0  # Seconds between mtime polls (cross-filesystem)
    debounce_window: float = DEBOUNCE_WINDOW_SEC
    max_debounce_wait: float = MAX_DEBOUNCE_WAIT_SEC
    stop_timeout: float = 2.0

    _watch_task: asyncio.Task[None] | None = field(default=None, init=False)
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _is_cross_fs: bool = field(init=False)
    _extensions: frozenset[str] = field(init=False)
    # Debouncing state
    _pending_changes: set[Path] = field(default_factory=set, init=False)
    _last_change_time: float = field(default=0.0, init=False)
    _first_change_time: float = field(default=0.0, init=False)
    _debounce_task: asyncio.Task[None] | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self._is_cross_fs = _is_cross_filesystem(self.directory)
        self._extensions = frozenset(e.lower() for e in self.extensions)

    @property
    def running(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    async def start(self) -> None:
        """Start watching for file changes."""
        if self._watch_task is not None:
            return

        self._stop_event.clear()
        if self._is_cross_fs:
            self._watch_task = asyncio.create_task(self._poll_loop())
            mode = "polling"
        else:
            self._watch_task = asyncio.create_task(self._watch_loop())
            mode = "native"
        logger.info(
            "file_watcher_started",
            directory=str(self.directory),
            mode=mode,
            debounce_window=self.debounce_window,
        )

    async def stop(self) -> None:
        """Stop watching for file changes."""
        self._stop_event.set()

        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._debounce_task
            self._debounce_task = None

        # Flush any pending changes before stopping
        if self._pending_changes:
            self._flush_pending()

        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._watch_task, timeout=self.stop_timeout)
            self._watch_task = None

        logger.info("file_watcher_stopped")

    def _is_document(self, path: Path) -> bool:
        _stem, ext = split_name(path.name)
        return ext.lower() in self._extensions

    def _queue_change(self, path: Path) -> None:
        """Queue a change for debounced delivery."""
        now = time.monotonic()

        if not self._pending_changes:
            self._first_change_time = now

        self._pending_changes.add(path)
        self._last_change_time = now

    def _should_flush(self) -> bool:
        """Check if we should flush pending changes."""
        if not self._pending_changes:
            return False

        now = time.monotonic()
        time_since_last = now - self._last_change_time
        time_since_first = now - self._first_change_time

        # Flush if quiet window elapsed OR max wait exceeded
        return time_since_last >= self.debounce_window or time_since_first >= self.max_debounce_wait

    def _flush_pending(self) -> None:
        """Flush pending changes to callback."""
        if not self._pending_changes:
            return

        paths = sorted(self._pending_changes)
        self._pending_changes.clear()
        self._first_change_time = 0.0
        self._last_change_time = 0.0

        logger.info("changes_detected", count=len(paths), sample=[p.name for p in paths[:5]])
        self.on_change(paths)

    async def _debounce_flush_loop(self) -> None:
        """Background task that flushes when debounce window elapses."""
        try:
            while not self._stop_event.is_set():
                await asyncio.sleep(0.1)  # Check every 100ms

                if self._should_flush():
                    self._flush_pending()
        except asyncio.CancelledError:
            pass

    async def _watch_loop(self) -> None:
        """Main watch loop using watchfiles (inotify on Linux)."""
        self._debounce_task = asyncio.create_task(self._debounce_flush_loop())

        try:
            while not self._stop_event.is_set():
                try:
                    async for changes in awatch(
                        self.directory,
                        recursive=False,
                        step=100,
                        rust_timeout=10_000,
                        stop_event=self._stop_event,
                        ignore_permission_denied=True,
                    ):
                        self._handle_changes(changes)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if self._stop_event.is_set():
                        return
                    logger.error("watcher_error", error=str(e), directory=str(self.directory))
                    # Brief backoff before retry
                    await asyncio.sleep(1.0)
        except asyncio.CancelledError:
            pass
        finally:
            if self._debounce_task:
                self._debounce_task.cancel()

    async def _poll_loop(self) -> None:
        """Poll loop using mtime checks (for cross-filesystem where inotify fails)."""
        mtimes = self._scan_mtimes()

        self._debounce_task = asyncio.create_task(self._debounce_flush_loop())

        try:
            while not self._stop_event.is_set():
                await asyncio.sleep(self.poll_interval)

                try:
                    current_mtimes = self._scan_mtimes()

                    for path, mtime in current_mtimes.items():
                        old_mtime = mtimes.get(path)
                        if old_mtime is None or mtime > old_mtime:
                            self._queue_change(path)

                    for path in mtimes:
                        if path not in current_mtimes:
                            self._queue_change(path)

                    mtimes = current_mtimes

                except Exception as e:
                    logger.error("poll_error", error=str(e))
        finally:
            if self._debounce_task:
                self._debounce_task.cancel()

    def _scan_mtimes(self) -> dict[Path, float]:
        """Scan the directory for document mtimes."""
        mtimes: dict[Path, float] = {}
        with contextlib.suppress(OSError), os.scandir(self.directory) as entries:
            for entry in entries:
                path = Path(entry.path)
                if not self._is_document(path):
                    continue
                with contextlib.suppress(OSError):
                    if entry.is_file():
                        mtimes[path] = entry.stat().st_mtime
        return mtimes

    def _handle_changes(self, changes: set[tuple[Change, str]]) -> None:
        """Queue document changes from one watchfiles batch.

        The watch is non-recursive, so every path is a direct child.
        """
        for change_type, path_str in changes:
            path = Path(path_str)
            if not self._is_document(path):
                continue
            self._queue_change(path)
            logger.debug("path_queued", path=path.name, change_type=change_type.name)
