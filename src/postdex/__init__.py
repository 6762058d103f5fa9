"""postdex - in-memory index over a directory of front-matter documents."""

from postdex.config import PostdexConfig, load_config
from postdex.daemon import IndexService
from postdex.index import Index, Record, ReloadCoordinator

__version__ = "0.1.0"

__all__ = [
    "Index",
    "IndexService",
    "PostdexConfig",
    "Record",
    "ReloadCoordinator",
    "load_config",
]
