"""Module dependency graph and invalidation."""

from hotrun.graph.engine import DependencyGraph
from hotrun.graph.store import ModuleStore, normalize_path

__all__ = ["DependencyGraph", "ModuleStore", "normalize_path"]
