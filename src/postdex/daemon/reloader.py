"""Background reloader: runs reload cycles off the event loop."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from postdex.index.models import ReloadStats
    from postdex.index.ops import ReloadCoordinator

logger = structlog.get_logger()


class ReloaderState(Enum):
    """Background reloader state."""

    IDLE = "idle"
    RELOADING = "reloading"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class ReloaderStatus:
    """Current reloader status."""

    state: ReloaderState
    queue_size: int
    last_stats: ReloadStats | None = None
    last_error: str | None = None


@dataclass
class BackgroundReloader:
    """
    Non-blocking reload trigger for an asyncio application.

    Design:
    - Change notifications are collected and debounced
    - The reload cycle runs on a single worker thread (the coordinator fans
      out its own parse pool)
    - The coordinator coalesces overlapping requests, so a burst never runs
      more than one follow-up cycle
    """

    coordinator: ReloadCoordinator
    debounce_seconds: float = 0.5

    _state: ReloaderState = field(default=ReloaderState.IDLE, init=False)
    _executor: ThreadPoolExecutor | None = field(default=None, init=False)
    _pending_paths: set[Path] = field(default_factory=set, init=False)
    _pending_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _debounce_task: asyncio.Task[None] | None = field(default=None, init=False)
    _flush_task: asyncio.Task[None] | None = field(default=None, init=False)
    _last_stats: ReloadStats | None = field(default=None, init=False)
    _last_error: str | None = field(default=None, init=False)
    _on_complete: Callable[[ReloadStats], Awaitable[None]] | None = field(default=None, init=False)

    def start(self) -> None:
        """Start the background reloader."""
        if self._executor is not None:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="postdex-reloader",
        )
        self._state = ReloaderState.IDLE
        logger.info("background_reloader_started")

    async def stop(self) -> None:
        """Stop the background reloader gracefully."""
        self._state = ReloaderState.STOPPING

        task = self._debounce_task
        if task is not None and not task.done() and task is not self._flush_task:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        # Let an in-flight reload record its result
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task

        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        self._state = ReloaderState.STOPPED
        logger.info("background_reloader_stopped")

    def queue_paths(self, paths: list[Path]) -> None:
        """Record changed paths and schedule a debounced reload."""
        with self._pending_lock:
            self._pending_paths.update(paths)
            count = len(self._pending_paths)

        logger.debug("paths_queued", new_paths=len(paths), total_pending=count)
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        loop = asyncio.get_running_loop()

        # Restart the quiet window, but never interrupt a reload already handed
        # to the executor: its stats and callback must still land.
        task = self._debounce_task
        if task is not None and not task.done() and task is not self._flush_task:
            task.cancel()

        self._debounce_task = loop.create_task(self._debounced_flush())

    async def _debounced_flush(self) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            return

        current = asyncio.current_task()
        self._flush_task = current
        try:
            await self._flush()
        finally:
            if self._flush_task is current:
                self._flush_task = None

    async def _flush(self) -> None:
        """Run one reload for everything queued so far."""
        if self._executor is None or self._state == ReloaderState.STOPPING:
            return

        with self._pending_lock:
            if not self._pending_paths:
                return
            count = len(self._pending_paths)
            self._pending_paths.clear()

        self._state = ReloaderState.RELOADING
        logger.info("reload_triggered", changed=count)

        try:
            loop = asyncio.get_running_loop()
            stats = await loop.run_in_executor(self._executor, self.coordinator.reload)
            if stats is None:
                # Coalesced, or the directory could not be listed
                self._last_error = self.coordinator.status.last_error
                return

            self._last_stats = stats
            self._last_error = None

            if self._on_complete is not None:
                await self._on_complete(stats)

        except Exception as e:
            self._last_error = str(e)
            logger.error("reload_failed", error=str(e))

        finally:
            # A newer flush may already be queued behind this one
            latest = self._flush_task is None or self._flush_task is asyncio.current_task()
            if self._state == ReloaderState.RELOADING and latest:
                self._state = ReloaderState.IDLE

    def set_on_complete(self, callback: Callable[[ReloadStats], Awaitable[None]]) -> None:
        """Set callback to invoke after a successful reload."""
        self._on_complete = callback

    @property
    def status(self) -> ReloaderStatus:
        with self._pending_lock:
            queue_size = len(self._pending_paths)
        return ReloaderStatus(
            state=self._state,
            queue_size=queue_size,
            last_stats=self._last_stats,
            last_error=self._last_error,
        )
