"""Index service: build once at startup, then keep the index current."""

from __future__ import annotations

from pathlib import Path
from types import TracebackType

import structlog

from postdex.config.models import PostdexConfig
from postdex.core.errors import InternalError
from postdex.core.logging import configure_logging
from postdex.daemon.reloader import BackgroundReloader
from postdex.daemon.watcher import FileWatcher
from postdex.index.builder import BodyRenderer, passthrough
from postdex.index.models import Index, Record, ReloadStats
from postdex.index.ops import ReloadCoordinator

logger = structlog.get_logger()

# The watcher already batches bursts; this only merges callbacks that land together.
RELOAD_DEBOUNCE_SEC = 0.1


class IndexService:
    """
    Owns the coordinator plus the optional watch machinery.

    Usage::

        async with IndexService(load_config()) as service:
            service.posts(0, 10)

    ``open()`` builds the index synchronously and fails loudly if the
    directory is unreadable. ``start()`` enables change-triggered reloads when
    ``index.watch`` is set; if watching is disabled or cannot start, the
    index simply stays as built.

    Pass ``configure_logs=True`` to apply the ``logging`` config section;
    applications that set up logging themselves leave it off.
    """

    def __init__(
        self,
        config: PostdexConfig | None = None,
        *,
        render: BodyRenderer = passthrough,
        configure_logs: bool = False,
    ) -> None:
        self.config = config or PostdexConfig()
        if configure_logs:
            configure_logging(config=self.config.logging)
        self.coordinator = ReloadCoordinator.from_config(self.config.index, render=render)
        self.reloader: BackgroundReloader | None = None
        self.watcher: FileWatcher | None = None
        self._opened = False

    @property
    def directory(self) -> Path:
        return self.coordinator.directory

    @property
    def watching(self) -> bool:
        return self.watcher is not None and self.watcher.running

    def open(self) -> ReloadStats:
        """Build the initial index.

        Raises:
            ScanError: If the document directory cannot be listed.
        """
        stats = self.coordinator.initialize()
        self._opened = True
        return stats

    async def start(self) -> bool:
        """Start change-triggered reloads. Returns whether watching is active."""
        if not self._opened:
            raise InternalError.unexpected("start() called before open()")
        if self.watcher is not None:
            return self.watching
        if not self.config.index.watch:
            logger.info("watch_disabled", directory=str(self.directory))
            return False

        watcher_config = self.config.watcher
        reloader = BackgroundReloader(self.coordinator, debounce_seconds=RELOAD_DEBOUNCE_SEC)
        watcher = FileWatcher(
            directory=self.directory.resolve(),
            on_change=reloader.queue_paths,
            extensions=self.config.index.extensions,
            poll_interval=watcher_config.poll_interval_sec,
            debounce_window=watcher_config.debounce_sec,
            max_debounce_wait=watcher_config.max_debounce_wait_sec,
            stop_timeout=watcher_config.stop_timeout_sec,
        )
        reloader.start()
        try:
            await watcher.start()
        except Exception as e:
            logger.warning("watch_unavailable", directory=str(self.directory), error=str(e))
            await reloader.stop()
            return False

        self.reloader = reloader
        self.watcher = watcher
        return True

    async def stop(self) -> None:
        """Stop watching. The last published index stays queryable."""
        if self.watcher is not None:
            await self.watcher.stop()
            self.watcher = None
        if self.reloader is not None:
            await self.reloader.stop()
            self.reloader = None

    def close(self) -> None:
        self.coordinator.close()

    async def __aenter__(self) -> IndexService:
        self.open()
        try:
            await self.start()
        except BaseException:
            self.close()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            await self.stop()
        finally:
            self.close()

    # Queries

    @property
    def index(self) -> Index:
        return self.coordinator.index

    def post_count(self) -> int:
        return self.coordinator.post_count()

    def post_count_for_tag(self, tag: str) -> int:
        return self.coordinator.post_count_for_tag(tag)

    def posts(self, offset: int | None = None, count: int | None = None) -> list[Record]:
        return self.coordinator.posts(offset, count)

    def posts_for_tag(
        self, tag: str, offset: int | None = None, count: int | None = None
    ) -> list[Record]:
        return self.coordinator.posts_for_tag(tag, offset, count)

    def post(self, year: int | str, month: int | str, day: int | str, name: str) -> Record | None:
        return self.coordinator.post(year, month, day, name)

    def post_by_name(self, name: str) -> Record | None:
        return self.coordinator.post_by_name(name)

    def tags(self) -> dict[str, int]:
        return self.coordinator.tags()
