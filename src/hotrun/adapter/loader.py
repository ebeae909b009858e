"""Importlib-backed module loader.

Executes Python source files as modules and records which tracked modules
each execution imports:
- A meta path finder wraps the loader of every tracked module imported for
  the first time, so nested first loads get their own records and edges
- A `builtins.__import__` hook attributes every import statement (cached
  modules included) to the module currently executing

Both hooks are process-global: they are installed when the outermost module
execution starts and removed when it ends. Imports made meanwhile from other
threads pass through them untouched.

Only files under the configured roots are tracked. Re-execution builds a
fresh module object; the live one in sys.modules is only replaced on commit.
"""

import builtins
import importlib.abc
import importlib.machinery
import importlib.util
import logging
import sys
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any

from hotrun.adapter.interface import LoadResult, ModuleLoader
from hotrun.domain.models import ModuleRecord
from hotrun.graph.engine import DependencyGraph
from hotrun.graph.store import normalize_path

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES = ["site-packages", "__pycache__", ".venv", ".git", ".tox"]


@dataclass
class _Frame:
    module_id: str
    dependencies: set[str] = field(default_factory=set)


class _TrackingModuleLoader(importlib.abc.Loader):
    """Wraps the real loader of a tracked module."""

    def __init__(self, wrapped: importlib.abc.Loader, owner: "ImportlibLoader", origin: str):
        self._wrapped = wrapped
        self._owner = owner
        self._origin = origin

    def create_module(self, spec):
        return self._wrapped.create_module(spec)

    def exec_module(self, module: ModuleType) -> None:
        self._owner.first_load(self._origin, module, self._wrapped.exec_module)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._wrapped, name)


class _TrackingFinder(importlib.abc.MetaPathFinder):
    """Meta path finder that marks tracked modules for dependency recording."""

    def __init__(self, owner: "ImportlibLoader"):
        self._owner = owner

    def find_spec(self, fullname, path, target=None):
        if not self._owner.executing_here():
            return None
        spec = None
        for finder in sys.meta_path:
            if finder is self:
                continue
            find_spec = getattr(finder, "find_spec", None)
            if find_spec is None:
                continue
            spec = find_spec(fullname, path, target)
            if spec is not None:
                break

        if spec is None or spec.origin is None or spec.loader is None:
            return spec
        if not self._owner.is_tracked(spec.origin):
            return spec

        spec.loader = _TrackingModuleLoader(spec.loader, self._owner, normalize_path(spec.origin))
        return spec


class ImportlibLoader(ModuleLoader):
    """Loads modules from files and records their import edges."""

    def __init__(
        self,
        graph: DependencyGraph,
        roots: Iterable[str | Path] | None = None,
        exclude: list[str] | None = None,
    ):
        self.graph = graph
        self.roots = [Path(r).resolve() for r in (roots or [Path.cwd()])]
        self.exclude = exclude if exclude is not None else list(DEFAULT_EXCLUDES)
        self._frames: list[_Frame] = []
        self._depth = 0
        self._thread: int | None = None
        self._finder = _TrackingFinder(self)
        self._original_import: Callable[..., ModuleType] | None = None

    def is_tracked(self, path: str | Path) -> bool:
        """Check if a source file belongs to the tracked graph."""
        path = Path(path)
        if path.suffix != ".py":
            return False
        resolved = path.resolve()
        if any(part in self.exclude for part in resolved.parts):
            return False
        return any(resolved.is_relative_to(root) for root in self.roots)

    def module_id_for(self, module: ModuleType) -> str | None:
        """Identity of a live module, or None if it is not tracked."""
        file_attr = getattr(module, "__file__", None)
        if not file_attr:
            return None
        path = Path(file_attr)
        if path.suffix == ".pyc":
            path = path.with_suffix(".py")
        if not self.is_tracked(path):
            return None
        return normalize_path(path)

    def module_name_for(self, path: str | Path) -> str:
        """Derive a dotted module name for a file from sys.path.

        Falls back to the file stem when no sys.path entry contains it.
        """
        path = Path(path).resolve()
        candidates: list[str] = []
        for entry in sys.path:
            try:
                rel_path = path.relative_to(Path(entry or ".").resolve())
            except (ValueError, OSError):
                continue
            parts = rel_path.parts
            if parts[-1] == "__init__.py":
                parts = parts[:-1]
            else:
                parts = (*parts[:-1], path.stem)
            if parts and all(p.isidentifier() for p in parts):
                candidates.append(".".join(parts))

        if candidates:
            return min(candidates, key=lambda name: name.count("."))
        return path.parent.name if path.name == "__init__.py" else path.stem

    def executing_here(self) -> bool:
        """True while a module executes on the calling thread."""
        return self._depth > 0 and self._thread == threading.get_ident()

    @contextmanager
    def _tracking(self) -> Iterator[None]:
        """Install the import hooks around a module execution.

        `builtins.__import__` and `sys.meta_path` are shared by the whole
        process; both are restored once the outermost execution exits.
        """
        if self._depth == 0:
            self._thread = threading.get_ident()
            self._original_import = builtins.__import__
            builtins.__import__ = self._import
            sys.meta_path.insert(0, self._finder)
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0:
                builtins.__import__ = self._original_import
                self._thread = None
                if self._finder in sys.meta_path:
                    sys.meta_path.remove(self._finder)

    def _import(self, name, globals=None, locals=None, fromlist=(), level=0):
        module = self._original_import(name, globals, locals, fromlist, level)
        if self._frames and self.executing_here():
            self._note_import(name, globals, fromlist, level)
        return module

    def _note_import(self, name, globals, fromlist, level) -> None:
        frame = self._frames[-1]
        full_name = name
        if level > 0:
            package = (globals or {}).get("__package__") or ""
            try:
                full_name = importlib.util.resolve_name("." * level + name, package)
            except (ImportError, ValueError):
                return

        names = [full_name]
        names.extend(f"{full_name}.{item}" for item in fromlist or () if item != "*")
        for imported in names:
            module = sys.modules.get(imported)
            if module is None:
                continue
            child_id = self.module_id_for(module)
            if child_id and child_id != frame.module_id:
                frame.dependencies.add(child_id)

    def _execute(
        self,
        module_id: str,
        module: ModuleType,
        exec_module: Callable[[ModuleType], None],
    ) -> set[str]:
        frame = _Frame(module_id)
        self._frames.append(frame)
        try:
            with self._tracking():
                exec_module(module)
        finally:
            self._frames.pop()
        return frame.dependencies

    def first_load(
        self,
        module_id: str,
        module: ModuleType,
        exec_module: Callable[[ModuleType], None],
    ) -> None:
        """Execute a tracked module imported for the first time."""
        self.graph.module_loaded(module_id, module.__name__, exports=module)
        dependencies = self._execute(module_id, module, exec_module)
        self.graph.replace_dependencies(module_id, dependencies)
        logger.debug(f"Loaded {module.__name__} ({len(dependencies)} tracked imports)")

    def _spec_for(self, record: ModuleRecord) -> importlib.machinery.ModuleSpec:
        path = Path(record.id)
        name = record.name or self.module_name_for(path)
        locations = [str(path.parent)] if path.name == "__init__.py" else None
        spec = importlib.util.spec_from_file_location(
            name, path, submodule_search_locations=locations
        )
        if spec is None or spec.loader is None:
            raise ImportError(f"Unable to load module from {path}")
        return spec

    async def load_module(self, record: ModuleRecord) -> LoadResult:
        spec = self._spec_for(record)
        module = importlib.util.module_from_spec(spec)
        dependencies = self._execute(record.id, module, spec.loader.exec_module)
        return LoadResult(exports=module, dependencies=dependencies)

    async def commit(self, record: ModuleRecord, result: LoadResult) -> None:
        module = result.exports
        name = module.__name__
        sys.modules[name] = module
        parent_name, _, child_name = name.rpartition(".")
        parent = sys.modules.get(parent_name) if parent_name else None
        if parent is not None:
            setattr(parent, child_name, module)

    async def load_path(self, path: str | Path, name: str | None = None) -> ModuleRecord:
        """Load a file for the first time and make it live."""
        module_id = normalize_path(path)
        record = self.graph.module_loaded(module_id, name or self.module_name_for(path))
        result = await self.load_module(record)
        await self.commit(record, result)
        self.graph.module_loaded(module_id, record.name, exports=result.exports)
        self.graph.replace_dependencies(module_id, result.dependencies)
        logger.info(f"Loaded {record.display_name} with {len(result.dependencies)} tracked imports")
        return record
