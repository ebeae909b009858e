"""ModuleRecord store.

Holds one record per loaded module plus the dependents index (the inverse of
every record's `dependencies`). Only the dependency graph engine and the
reconciliation commit step write to it.
"""

import logging
from collections import defaultdict
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING, Any

from hotrun.domain.models import ModuleRecord

if TYPE_CHECKING:
    from hotrun.reconcile.reconcilers import Reconciler

logger = logging.getLogger(__name__)


def normalize_path(path: str | Path) -> str:
    """Resolve a path to the string form used as a module identity."""
    return str(Path(path).resolve())


class ModuleStore:
    """Per-module metadata keyed by resolved source path."""

    def __init__(self) -> None:
        self._records: dict[str, ModuleRecord] = {}
        self._dependents: dict[str, set[str]] = defaultdict(set)
        self._by_source: dict[str, set[str]] = defaultdict(set)
        self._next_order = 0

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ModuleRecord]:
        return iter(sorted(self._records.values(), key=lambda r: r.load_order))

    def get(self, module_id: str) -> ModuleRecord | None:
        return self._records.get(module_id)

    def require(self, module_id: str) -> ModuleRecord:
        record = self._records.get(module_id)
        if record is None:
            raise KeyError(f"Unknown module: {module_id}")
        return record

    def ensure(self, module_id: str, name: str | None = None) -> ModuleRecord:
        """Get the record for `module_id`, creating it on first load."""
        record = self._records.get(module_id)
        if record is None:
            record = ModuleRecord(id=module_id, name=name, load_order=self._next_order)
            self._next_order += 1
            self._records[module_id] = record
            self._by_source[normalize_path(module_id)].add(module_id)
            logger.debug(f"Tracking module {record.display_name} (#{record.load_order})")
        elif name and record.name is None:
            record.name = name
        return record

    def dependents_of(self, module_id: str) -> set[str]:
        return set(self._dependents.get(module_id, ()))

    def add_edge(self, parent_id: str, child_id: str) -> bool:
        """Record that `parent_id` loaded `child_id`. Returns False if already known."""
        parent = self.require(parent_id)
        self.require(child_id)
        if child_id in parent.dependencies:
            return False
        parent.dependencies.add(child_id)
        self._dependents[child_id].add(parent_id)
        return True

    def remove_edge(self, parent_id: str, child_id: str) -> None:
        parent = self.require(parent_id)
        parent.dependencies.discard(child_id)
        dependents = self._dependents.get(child_id)
        if dependents is not None:
            dependents.discard(parent_id)

    def add_source(self, module_id: str, path: str | Path) -> None:
        """Make a change to `path` invalidate `module_id`."""
        record = self.require(module_id)
        source = normalize_path(path)
        record.extra_sources.add(source)
        self._by_source[source].add(module_id)

    def modules_for_path(self, path: str | Path) -> set[str]:
        """Ids of modules defined by (or reading) the given file."""
        return set(self._by_source.get(normalize_path(path), ()))

    def set_reconciler(self, module_id: str, reconciler: "Reconciler | None") -> None:
        self.require(module_id).reconciler = reconciler

    def commit(self, module_id: str, exports: Any) -> ModuleRecord:
        """Replace a module's live exports and bump its generation."""
        record = self.require(module_id)
        record.exports = exports
        record.generation += 1
        return record
