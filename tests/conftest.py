"""Pytest configuration and fixtures."""

import sys
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from hotrun.adapter.interface import LoadResult, ModuleLoader
from hotrun.config import EngineConfig
from hotrun.domain.models import ModuleRecord
from hotrun.engine import HotReloadEngine
from hotrun.events import EventBus
from hotrun.graph import DependencyGraph


class FakeLoader(ModuleLoader):
    """In-memory loader: module bodies are factories keyed by module id."""

    def __init__(self) -> None:
        self.bodies: dict[str, Callable[[], Any]] = {}
        self.dependencies: dict[str, set[str]] = {}
        self.loads: list[str] = []
        self.commits: list[str] = []

    def define(self, module_id: str, body: Callable[[], Any] | Any) -> None:
        self.bodies[module_id] = body if callable(body) else (lambda: body)

    async def load_module(self, record: ModuleRecord) -> LoadResult:
        self.loads.append(record.id)
        body = self.bodies.get(record.id, lambda: SimpleNamespace(version=record.generation + 1))
        exports = body()
        dependencies = self.dependencies.get(record.id, set(record.dependencies))
        return LoadResult(exports=exports, dependencies=set(dependencies))

    async def commit(self, record: ModuleRecord, result: LoadResult) -> None:
        self.commits.append(record.id)


@pytest.fixture
def fake_loader() -> FakeLoader:
    return FakeLoader()


@pytest.fixture
def graph() -> DependencyGraph:
    return DependencyGraph()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
async def engine(fake_loader: FakeLoader):
    """Initialized engine backed by the in-memory loader."""
    hot = HotReloadEngine(EngineConfig(), loader=fake_loader)
    await hot.init()
    yield hot
    await hot.shutdown()


@pytest.fixture
def import_root(tmp_path: Path):
    """A directory on sys.path whose modules are removed from sys.modules afterwards."""
    root = tmp_path / "src"
    root.mkdir()
    sys.path.insert(0, str(root))
    before = set(sys.modules)
    yield root
    if str(root) in sys.path:
        sys.path.remove(str(root))
    for name in set(sys.modules) - before:
        module = sys.modules.get(name)
        file_attr = getattr(module, "__file__", None) or ""
        if file_attr.startswith(str(tmp_path)):
            del sys.modules[name]
