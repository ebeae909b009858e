"""Watch/load adapters: file watching and module execution."""

from hotrun.adapter.interface import LoadResult, ModuleLoader
from hotrun.adapter.loader import ImportlibLoader
from hotrun.adapter.watcher import SourceChange, SourceWatcher

__all__ = [
    "ImportlibLoader",
    "LoadResult",
    "ModuleLoader",
    "SourceChange",
    "SourceWatcher",
]
