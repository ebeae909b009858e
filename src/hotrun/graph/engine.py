"""Dependency graph engine.

Builds the module graph as modules load and turns a changed file into an
ordered invalidation set:
- Map the path to the modules it defines
- Collect their transitive dependents
- Order bottom-up (dependencies first), ties broken by first-load order
"""

import heapq
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from hotrun.domain.models import InvalidationSet, ModuleRecord
from hotrun.graph.store import ModuleStore, normalize_path

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Dependency bookkeeping and invalidation over a ModuleStore."""

    def __init__(self, store: ModuleStore | None = None):
        self.store = store or ModuleStore()

    def module_loaded(
        self,
        module_id: str,
        name: str | None = None,
        exports: Any = None,
    ) -> ModuleRecord:
        """Register a module on its first load.

        Exports are only set while the record has none; later versions go
        through the reconciliation commit.
        """
        record = self.store.ensure(module_id, name)
        if exports is not None and record.exports is None:
            record.exports = exports
        return record

    def record_dependency(self, parent_id: str, child_id: str) -> None:
        """Record that executing `parent_id` caused `child_id` to load.

        Idempotent. Unknown modules are registered on the fly.
        """
        if parent_id == child_id:
            return
        self.store.ensure(parent_id)
        self.store.ensure(child_id)
        if self.store.add_edge(parent_id, child_id):
            logger.debug(f"Dependency: {parent_id} -> {child_id}")

    def replace_dependencies(self, module_id: str, children: Iterable[str]) -> None:
        """Swap a module's edges for the ones seen during its latest execution."""
        record = self.store.require(module_id)
        new_children = {c for c in children if c != module_id}

        for stale in record.dependencies - new_children:
            self.store.remove_edge(module_id, stale)
        for child in new_children - record.dependencies:
            self.record_dependency(module_id, child)

    def dependents_closure(self, roots: Iterable[str]) -> set[str]:
        """All modules that transitively depend on any of `roots`, roots included."""
        visited: set[str] = set()
        stack = [r for r in roots if r in self.store]
        while stack:
            module_id = stack.pop()
            if module_id in visited:
                continue
            visited.add(module_id)
            stack.extend(d for d in self.store.dependents_of(module_id) if d not in visited)
        return visited

    def dependency_order(self, module_ids: Iterable[str]) -> tuple[str, ...]:
        """Order modules so each comes after its dependencies within the set.

        Siblings are ordered by first-load order. A cycle is broken by
        releasing its earliest-loaded member.
        """
        members = {m for m in module_ids if m in self.store}
        if not members:
            return ()

        def sort_key(module_id: str) -> tuple[int, str]:
            return (self.store.require(module_id).load_order, module_id)

        pending: dict[str, int] = {
            m: len(self.store.require(m).dependencies & members) for m in members
        }
        ready = [sort_key(m) for m, count in pending.items() if count == 0]
        heapq.heapify(ready)

        order: list[str] = []
        emitted: set[str] = set()
        while len(order) < len(members):
            if not ready:
                cycle_member = min((m for m in members if m not in emitted), key=sort_key)
                logger.warning(f"Dependency cycle detected, releasing {cycle_member}")
                pending[cycle_member] = 0
                heapq.heappush(ready, sort_key(cycle_member))

            _, module_id = heapq.heappop(ready)
            if module_id in emitted:
                continue
            emitted.add(module_id)
            order.append(module_id)

            for dependent in self.store.dependents_of(module_id):
                if dependent not in members or dependent in emitted:
                    continue
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heapq.heappush(ready, sort_key(dependent))

        return tuple(order)

    def on_file_changed(self, path: str | Path) -> InvalidationSet:
        """Compute the invalidation set for a changed file.

        A path that maps to no tracked module yields an empty set.
        """
        roots = self.store.modules_for_path(path)
        if not roots:
            logger.debug(f"Ignoring change to untracked file {path}")
            return InvalidationSet(path=normalize_path(path))

        affected = self.dependents_closure(roots)
        order = self.dependency_order(affected)
        logger.info(f"Change to {path} invalidates {len(order)} module(s)")
        return InvalidationSet(order=order, roots=frozenset(roots), path=normalize_path(path))

    def invalidate(self, module_ids: Iterable[str]) -> InvalidationSet:
        """Build an invalidation set for modules changed by some other means."""
        roots = {m for m in module_ids if m in self.store}
        order = self.dependency_order(self.dependents_closure(roots))
        return InvalidationSet(order=order, roots=frozenset(roots))
