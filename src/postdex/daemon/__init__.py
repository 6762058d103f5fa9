"""postdex daemon - file watching and background reloads."""

from postdex.daemon.reloader import BackgroundReloader
from postdex.daemon.service import IndexService
from postdex.daemon.watcher import FileWatcher

__all__ = [
    "BackgroundReloader",
    "FileWatcher",
    "IndexService",
]
