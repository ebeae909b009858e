"""Tests for the importlib loader and end-to-end reloads of real files."""

import builtins
import sys
from pathlib import Path

import pytest

from hotrun.adapter.loader import ImportlibLoader
from hotrun.config import EngineConfig
from hotrun.domain.enums import ModuleStatus
from hotrun.engine import HotReloadEngine
from hotrun.graph import DependencyGraph, normalize_path


def write(path: Path, source: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(source)
    return path


@pytest.fixture
def layered(import_root: Path) -> Path:
    """top imports mid, mid imports base."""
    write(import_root / "base.py", "VALUE = 1\n")
    write(import_root / "mid.py", "import base\n\nTOTAL = base.VALUE + 1\n")
    return write(import_root / "top.py", "from mid import TOTAL\n\nRESULT = TOTAL * 10\n")


@pytest.fixture
async def hot(import_root: Path):
    engine = HotReloadEngine(EngineConfig(watch_dirs=[str(import_root)]), root=import_root)
    await engine.init()
    yield engine
    await engine.shutdown()


class TestImportlibLoader:
    """Tests for ImportlibLoader."""

    async def test_load_path_records_import_edges(self, import_root: Path, layered: Path):
        graph = DependencyGraph()
        loader = ImportlibLoader(graph, roots=[import_root])

        record = await loader.load_path(layered)

        top, mid, base = (normalize_path(import_root / f"{n}.py") for n in ("top", "mid", "base"))
        assert record.id == top
        assert record.name == "top"
        assert graph.store.require(top).dependencies == {mid}
        assert graph.store.require(mid).dependencies == {base}
        assert sys.modules["top"].RESULT == 20
        assert graph.on_file_changed(import_root / "base.py").order == (base, mid, top)

    async def test_untracked_imports_are_ignored(self, import_root: Path):
        script = write(import_root / "script.py", "import json\nimport hotrun\n")
        graph = DependencyGraph()

        await ImportlibLoader(graph, roots=[import_root]).load_path(script)

        assert len(graph.store) == 1
        assert graph.store.require(normalize_path(script)).dependencies == set()

    async def test_relative_imports_inside_package(self, import_root: Path):
        write(import_root / "pkg" / "__init__.py", "")
        write(import_root / "pkg" / "util.py", "def double(x):\n    return x * 2\n")
        core = write(import_root / "pkg" / "core.py", "from . import util\n\nANSWER = util.double(21)\n")
        graph = DependencyGraph()

        record = await ImportlibLoader(graph, roots=[import_root]).load_path(core)

        assert record.name == "pkg.core"
        assert normalize_path(import_root / "pkg" / "util.py") in record.dependencies
        assert sys.modules["pkg.core"].ANSWER == 42
        assert sys.modules["pkg"].core is sys.modules["pkg.core"]

    async def test_candidate_is_not_live_until_commit(self, import_root: Path, layered: Path):
        graph = DependencyGraph()
        loader = ImportlibLoader(graph, roots=[import_root])
        await loader.load_path(layered)
        live = sys.modules["base"]

        write(import_root / "base.py", "VALUE = 100\n")
        record = graph.store.require(normalize_path(import_root / "base.py"))
        candidate = await loader.load_module(record)

        assert candidate.exports.VALUE == 100
        assert sys.modules["base"] is live

        await loader.commit(record, candidate)

        assert sys.modules["base"] is candidate.exports

    async def test_import_hooks_are_removed_after_load(self, import_root: Path, layered: Path):
        original_import = builtins.__import__
        original_meta_path = list(sys.meta_path)
        loader = ImportlibLoader(DependencyGraph(), roots=[import_root])

        await loader.load_path(layered)
        broken = write(import_root / "broken.py", "import base\nraise RuntimeError('boom')\n")
        with pytest.raises(RuntimeError, match="boom"):
            await loader.load_path(broken)

        assert builtins.__import__ is original_import
        assert sys.meta_path == original_meta_path
        assert not loader.executing_here()

    async def test_imports_from_other_threads_are_not_recorded(self, import_root: Path):
        write(import_root / "helper.py", "VALUE = 1\n")
        spawner = write(
            import_root / "spawner.py",
            "import threading\n"
            "\n"
            "\n"
            "def work():\n"
            "    import helper\n"
            "\n"
            "\n"
            "worker = threading.Thread(target=work)\n"
            "worker.start()\n"
            "worker.join()\n",
        )
        graph = DependencyGraph()

        record = await ImportlibLoader(graph, roots=[import_root]).load_path(spawner)

        assert record.dependencies == set()
        assert normalize_path(import_root / "helper.py") not in graph.store
        assert sys.modules["helper"].VALUE == 1

    async def test_module_name_falls_back_to_stem(self, tmp_path: Path):
        loader = ImportlibLoader(DependencyGraph(), roots=[tmp_path])

        assert loader.module_name_for(tmp_path / "outside" / "tool.py") == "tool"

    def test_is_tracked(self, import_root: Path):
        loader = ImportlibLoader(DependencyGraph(), roots=[import_root])

        assert loader.is_tracked(import_root / "app.py")
        assert not loader.is_tracked(import_root / "notes.txt")
        assert not loader.is_tracked(import_root / ".venv" / "lib.py")
        assert not loader.is_tracked(Path(pytest.__file__))


class TestEndToEnd:
    """Edits to real files reconciled through the engine."""

    async def test_module_hook_absorbs_edit(self, hot: HotReloadEngine, import_root: Path):
        settings = write(
            import_root / "settings.py",
            'GREETING = "hi"\n\n\ndef __reconcile__(old, new):\n    return True\n',
        )
        app = write(import_root / "app.py", "import settings\n")
        await hot.load(app)

        write(settings, 'GREETING = "hello there"\n\n\ndef __reconcile__(old, new):\n    return True\n')
        outcomes = await hot.on_file_changed(settings)

        outcome = outcomes[0]
        assert outcome.status_of(normalize_path(settings)) == ModuleStatus.COMMITTED
        assert outcome.status_of(normalize_path(app)) == ModuleStatus.SKIPPED
        assert sys.modules["settings"].GREETING == "hello there"
        assert hot.store.require(normalize_path(settings)).generation == 1

    async def test_syntax_error_keeps_old_module(self, hot: HotReloadEngine, import_root: Path):
        settings = write(
            import_root / "settings.py",
            'GREETING = "hi"\n\n\ndef __reconcile__(old, new):\n    return True\n',
        )
        app = write(import_root / "app.py", "import settings\n")
        await hot.load(app)
        live = sys.modules["settings"]

        write(settings, "GREETING = (\n")
        outcome = (await hot.on_file_changed(settings))[0]

        assert outcome.status_of(normalize_path(settings)) == ModuleStatus.LOAD_FAILED
        assert outcome.status_of(normalize_path(app)) == ModuleStatus.BLOCKED
        assert sys.modules["settings"] is live
        assert live.GREETING == "hi"
        assert not outcome.requires_restart

    async def test_unreconciled_edit_requires_restart(self, hot: HotReloadEngine, layered: Path, import_root: Path):
        await hot.load(layered)

        write(import_root / "base.py", "VALUE = 2  # edited\n")
        outcome = (await hot.on_file_changed(import_root / "base.py"))[0]

        assert [r.status for r in outcome.results] == [
            ModuleStatus.UNRECONCILED,
            ModuleStatus.UNRECONCILED,
            ModuleStatus.TERMINAL,
        ]
        assert outcome.requires_restart
        assert sys.modules["top"].RESULT == 20

    async def test_steps_module_reruns_edited_suffix(self, hot: HotReloadEngine, import_root: Path):
        template = (
            "from hotrun import StepDefinition\n"
            "\n"
            "\n"
            "def fetch(step_input, control):\n"
            '    return {{"rows": 3}}\n'
            "\n"
            "\n"
            "def report(step_input, control):\n"
            '    return {{"report": step_input["rows"] * {factor}}}\n'
            "\n"
            "\n"
            'STEPS = [StepDefinition("fetch", fetch), StepDefinition("report", report)]\n'
        )
        pipeline = write(import_root / "pipeline.py", template.format(factor=2))
        record = await hot.load(pipeline)
        reconciler = hot.steps_reconciler(record.id)

        first = await reconciler.start(record.exports)
        assert first.output == {"rows": 3, "report": 6}

        write(pipeline, template.format(factor=100))
        outcome = (await hot.on_file_changed(pipeline))[0]

        assert outcome.status_of(record.id) == ModuleStatus.COMMITTED
        assert reconciler.last_result.unwound == ["report"]
        assert reconciler.last_result.reran == ["report"]
        assert reconciler.last_result.output == {"rows": 3, "report": 300}
