"""Tests for the engine context: lifecycle, change queue and step runs."""

import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from hotrun.adapter.watcher import SourceChange
from hotrun.config import EngineConfig
from hotrun.domain.enums import ChangeKind, ModuleStatus, StepsStatus
from hotrun.domain.models import StepDefinition
from hotrun.engine import HotReloadEngine
from hotrun.errors import EngineNotRunningError
from hotrun.events import EventType
from hotrun.graph import normalize_path
from hotrun.reconcile import ModuleHookReconciler, UpdateReconciler
from hotrun.steps import StepsReconciler


class TestLifecycle:
    """Tests for init() and shutdown()."""

    async def test_operations_require_init(self, fake_loader):
        engine = HotReloadEngine(EngineConfig(), loader=fake_loader)

        with pytest.raises(EngineNotRunningError):
            await engine.on_file_changed("a.py")
        with pytest.raises(EngineNotRunningError):
            await engine.run_steps("seq", [])
        with pytest.raises(EngineNotRunningError):
            engine.watch()

    async def test_init_is_idempotent_and_emits(self, fake_loader):
        engine = HotReloadEngine(EngineConfig(), loader=fake_loader)
        queue = await engine.bus.subscribe("test", [EventType.ENGINE_STARTED, EventType.ENGINE_STOPPED])

        async with engine:
            assert await engine.init() is engine
            assert engine.running

        assert not engine.running
        assert [queue.get_nowait().type for _ in range(queue.qsize())] == [
            EventType.ENGINE_STARTED,
            EventType.ENGINE_STOPPED,
        ]

    async def test_shutdown_unwinds_step_sequences(self, fake_loader):
        rewound = []

        def step(step_input, control):
            control.on_rewind(lambda: rewound.append("s"))
            return {}

        engine = await HotReloadEngine(EngineConfig(), loader=fake_loader).init()
        await engine.run_steps("seq", [StepDefinition("s", step)])

        await engine.shutdown()

        assert rewound == ["s"]
        with pytest.raises(EngineNotRunningError):
            await engine.run_steps("seq", [])

    async def test_load_requires_path_capable_loader(self, engine):
        with pytest.raises(TypeError, match="cannot load paths"):
            await engine.load("app.py")


class TestChanges:
    """Tests for change handling through the engine."""

    async def test_callable_reconciler_commits(self, engine, fake_loader):
        engine.register_module("a", exports=SimpleNamespace(version=0))
        seen = []
        engine.register_reconciler("a", lambda old, new: seen.append(new.version))

        outcomes = await engine.on_file_changed("a")

        assert len(outcomes) == 1
        assert outcomes[0].status_of("a") == ModuleStatus.COMMITTED
        assert seen == [1]
        assert isinstance(engine.store.require("a").reconciler, UpdateReconciler)
        assert engine.get_reconcile_history() == outcomes

    async def test_register_module_with_dependencies(self, engine):
        engine.register_module("a")
        engine.register_module("b", dependencies=["a"])

        assert engine.store.dependents_of("a") == {"b"}

    async def test_unknown_path_produces_no_outcome(self, engine, fake_loader):
        engine.register_module("a")

        assert await engine.on_file_changed("elsewhere.py") == []
        assert fake_loader.loads == []

    async def test_module_hook_attached_on_register(self, engine):
        engine.register_module("a", exports=SimpleNamespace(__reconcile__=lambda old, new: True))
        engine.register_module("b", exports=SimpleNamespace())

        assert isinstance(engine.store.require("a").reconciler, ModuleHookReconciler)
        assert engine.store.require("b").reconciler is None

    async def test_changes_during_reconciliation_are_queued(self, engine, fake_loader):
        gate = asyncio.Event()
        entered = asyncio.Event()

        async def slow(old, new):
            entered.set()
            await gate.wait()
            return True

        engine.register_module("a")
        engine.register_module("b")
        engine.register_reconciler("a", slow)
        engine.register_reconciler("b", lambda old, new: True)

        first = asyncio.create_task(engine.on_file_changed("a"))
        await entered.wait()

        # queued behind the in-flight reconciliation; "b" twice coalesces
        assert await engine.on_file_changed("b") == []
        assert await engine.on_file_changed("b") == []
        gate.set()
        outcomes = await first

        assert [o.invalidation.order for o in outcomes] == [("a",), ("b",)]
        assert fake_loader.loads == ["a", "b"]

    async def test_changes_during_triggered_reconciliation_are_processed(self, engine, fake_loader):
        gate = asyncio.Event()
        entered = asyncio.Event()

        async def slow(old, new):
            entered.set()
            await gate.wait()
            return True

        engine.register_module("a")
        engine.register_module("b")
        engine.register_reconciler("a", slow)
        engine.register_reconciler("b", lambda old, new: True)

        triggered = asyncio.create_task(engine.trigger_reconciliation(engine.graph.invalidate(["a"])))
        await entered.wait()
        assert await engine.on_file_changed("b") == []
        gate.set()
        outcome = await triggered

        assert outcome.invalidation.order == ("a",)
        assert fake_loader.loads == ["a", "b"]
        assert engine._pending == {}
        assert [o.invalidation.order for o in engine.get_reconcile_history()] == [("a",), ("b",)]

    async def test_add_source_invalidates_module(self, engine, fake_loader, tmp_path: Path):
        template = tmp_path / "report.html"
        engine.register_module("report")
        engine.register_reconciler("report", lambda old, new: True)

        engine.add_source("report", template)
        outcomes = await engine.on_file_changed(template)

        assert outcomes[0].status_of("report") == ModuleStatus.COMMITTED
        assert fake_loader.loads == ["report"]

    async def test_trigger_reconciliation(self, engine, fake_loader):
        engine.register_module("a")
        engine.register_module("b", dependencies=["a"])
        engine.register_reconciler("b", lambda old, new: True)

        outcome = await engine.trigger_reconciliation(engine.graph.invalidate(["a"]))

        assert outcome.status_of("a") == ModuleStatus.UNRECONCILED
        assert outcome.status_of("b") == ModuleStatus.COMMITTED

    async def test_commit_notifies_oracle(self, engine, fake_loader, monkeypatch):
        notified = []
        monkeypatch.setattr(engine.oracle, "notify_module_changed", notified.append)
        engine.register_module("a", name="pkg.a")
        engine.register_reconciler("a", lambda old, new: True)

        await engine.on_file_changed("a")

        assert notified == ["pkg.a"]

    async def test_deleted_files_are_skipped(self, engine, fake_loader):
        engine.register_module("a")
        engine.register_reconciler("a", lambda old, new: True)

        await engine._handle_changes([SourceChange("a", ChangeKind.DELETED)])
        assert fake_loader.loads == []

        await engine._handle_changes([SourceChange("a", ChangeKind.MODIFIED)])
        assert fake_loader.loads == ["a"]


class TestSteps:
    """Tests for step sequences owned by the engine."""

    async def test_run_steps_without_waiting(self, engine):
        def fetch(step_input, control):
            return {"rows": 3}

        result = await engine.run_steps("etl", [StepDefinition("fetch", fetch)], wait=False)

        assert result.status == StepsStatus.PENDING
        final = await result.task
        assert final.status == StepsStatus.COMPLETED
        assert final.output == {"rows": 3}
        assert engine.sequence("etl").history == ["fetch"]

    async def test_run_steps_fingerprints_definitions(self, engine):
        calls = []

        def fetch(step_input, control):
            calls.append("fetch")
            return {}

        await engine.run_steps("etl", [StepDefinition("fetch", fetch)])
        await engine.run_steps("etl", [StepDefinition("fetch", fetch)])

        assert calls == ["fetch"]
        assert engine.sequence("etl").runs[0].fingerprint is not None

    async def test_steps_module_reconciles_through_engine(self, engine, fake_loader):
        log = []

        def load(step_input, control):
            log.append("load")
            return {"n": 1}

        def report(step_input, control):
            log.append(f"report {step_input['n']}")
            return {}

        def report_edited(step_input, control):
            log.append(f"report v2 {step_input['n']}")
            return {}

        engine.register_module(
            "pipeline",
            exports=SimpleNamespace(STEPS=[StepDefinition("load", load), StepDefinition("report", report)]),
        )
        reconciler = engine.steps_reconciler("pipeline")
        await reconciler.start(engine.store.require("pipeline").exports)
        fake_loader.define(
            "pipeline",
            SimpleNamespace(STEPS=[StepDefinition("load", load), StepDefinition("report", report_edited)]),
        )

        outcomes = await engine.on_file_changed("pipeline")

        assert isinstance(engine.store.require("pipeline").reconciler, StepsReconciler)
        assert outcomes[0].status_of("pipeline") == ModuleStatus.COMMITTED
        assert log == ["load", "report 1", "report v2 1"]
        assert engine.store.require("pipeline").generation == 1


class TestWatching:
    """Tests for the watcher the engine builds."""

    async def test_watcher_reports_extra_sources(self, fake_loader, tmp_path: Path):
        (tmp_path / "app.py").write_text("x = 1\n")
        rates = tmp_path / "data" / "rates.csv"
        rates.parent.mkdir()
        rates.write_text("usd,1\n")
        engine = await HotReloadEngine(EngineConfig(), root=tmp_path, loader=fake_loader).init()
        engine.register_module("pricing")
        engine.register_reconciler("pricing", lambda old, new: True)
        engine.add_source("pricing", rates)

        watcher = engine.create_watcher()
        watcher.prime()
        rates.write_text("usd,2\n")
        changes = watcher.poll()
        await engine._handle_changes(changes)
        await engine.shutdown()

        assert changes == [SourceChange(normalize_path(rates), ChangeKind.MODIFIED)]
        assert fake_loader.loads == ["pricing"]

    async def test_watcher_only_hashes_tracked_sources(self, tmp_path: Path):
        (tmp_path / "app.py").write_text("x = 1\n")
        (tmp_path / "notes.txt").write_text("todo\n")
        (tmp_path / ".venv").mkdir()
        (tmp_path / ".venv" / "lib.py").write_text("# vendored\n")
        engine = HotReloadEngine(EngineConfig(patterns=["*.py", "*.txt"]), root=tmp_path)

        watcher = engine.create_watcher()
        watcher.prime()

        assert watcher.watched == [normalize_path(tmp_path / "app.py")]
