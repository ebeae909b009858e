"""Hot-reload engine context.

Owns the process-wide state of one hot-reload session:
- Module store and dependency graph
- Reconciliation protocol and loader adapter
- Step sequences by id
- The change queue: one invalidation set is reconciled at a time, paths
  arriving meanwhile are queued and coalesced

Lifecycle is explicit: `init()` before use, `shutdown()` to stop watching and
unwind every step sequence.
"""

import asyncio
import logging
from collections.abc import Callable, Collection, Iterable, Sequence
from pathlib import Path
from typing import Any

from hotrun.adapter.interface import ModuleLoader
from hotrun.adapter.loader import ImportlibLoader
from hotrun.adapter.watcher import SourceChange, SourceWatcher
from hotrun.config import EngineConfig
from hotrun.domain.enums import ChangeKind, StepsStatus
from hotrun.domain.models import (
    InvalidationSet,
    ModuleRecord,
    ReconcileOutcome,
    StepDefinition,
    StepsResult,
)
from hotrun.errors import EngineNotRunningError
from hotrun.events import EventBus, EventType
from hotrun.graph.engine import DependencyGraph
from hotrun.graph.store import normalize_path
from hotrun.hot.oracle import SourceOracle
from hotrun.reconcile.protocol import ReconciliationProtocol
from hotrun.reconcile.reconcilers import ModuleHookReconciler, Reconciler, UpdateReconciler
from hotrun.steps.reconciler import StepSelector, StepsReconciler, with_fingerprints
from hotrun.steps.sequence import StepSequence

logger = logging.getLogger(__name__)


class HotReloadEngine:
    """Entry point for hosts embedding hot reload."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        root: Path | None = None,
        loader: ModuleLoader | None = None,
        bus: EventBus | None = None,
        oracle: SourceOracle | None = None,
    ):
        self.config = config or EngineConfig()
        self.root = root or Path.cwd()
        self.bus = bus or EventBus()
        self.graph = DependencyGraph()
        self.oracle = oracle or SourceOracle()
        self.loader = loader or ImportlibLoader(
            self.graph,
            roots=self.config.resolved_watch_dirs(self.root),
            exclude=self.config.exclude_parts,
        )
        self.protocol = ReconciliationProtocol(
            self.graph,
            self.loader,
            bus=self.bus,
            on_commit=self._after_commit,
        )

        self._running = False
        self._sequences: dict[str, StepSequence] = {}
        self._lock = asyncio.Lock()
        self._pending: dict[str, None] = {}
        self._history: list[ReconcileOutcome] = []
        self._stop_event: asyncio.Event | None = None
        self._watch_task: asyncio.Task[None] | None = None

    @property
    def store(self):
        return self.graph.store

    @property
    def running(self) -> bool:
        return self._running

    def _require_running(self, operation: str) -> None:
        if not self._running:
            raise EngineNotRunningError(operation)

    # -------------------------- lifecycle --------------------------

    async def init(self) -> "HotReloadEngine":
        """Enable the engine. Idempotent."""
        if self._running:
            return self
        self._running = True
        logger.info(f"Hot-reload engine started (watching {', '.join(self.config.watch_dirs)})")
        await self.bus.emit(EventType.ENGINE_STARTED, watch_dirs=self.config.watch_dirs)
        return self

    async def shutdown(self) -> None:
        """Stop watching and unwind every step sequence."""
        if not self._running:
            return

        await self.stop_watching()
        for sequence in list(self._sequences.values()):
            errors = await sequence.dispose()
            for error in errors:
                logger.warning(f"During shutdown: {error}")
        self._sequences.clear()
        self._pending.clear()
        self._running = False
        logger.info("Hot-reload engine stopped")
        await self.bus.emit(EventType.ENGINE_STOPPED)

    async def __aenter__(self) -> "HotReloadEngine":
        return await self.init()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # -------------------------- modules --------------------------

    async def load(self, path: str | Path, name: str | None = None) -> ModuleRecord:
        """Load a source file under the engine, tracking everything it imports."""
        self._require_running("load modules")
        load_path = getattr(self.loader, "load_path", None)
        if load_path is None:
            raise TypeError(f"{type(self.loader).__name__} cannot load paths; use register_module()")

        record = await load_path(path, name)
        self._attach_module_hooks()
        await self.bus.emit(
            EventType.MODULE_LOADED,
            module=record.display_name,
            tracked=len(self.store),
        )
        return record

    def register_module(
        self,
        module_id: str,
        exports: Any = None,
        dependencies: Iterable[str] = (),
        name: str | None = None,
    ) -> ModuleRecord:
        """Register a module loaded by an external adapter."""
        record = self.graph.module_loaded(module_id, name, exports=exports)
        for child in dependencies:
            self.graph.record_dependency(module_id, child)
        self._attach_hook(record)
        return record

    def record_dependency(self, parent_id: str, child_id: str) -> None:
        self.graph.record_dependency(parent_id, child_id)

    def add_source(self, module_id: str, path: str | Path) -> None:
        """Reload `module_id` whenever `path` changes.

        For files a module reads rather than imports (templates, data). The
        watcher reports them whatever their name.
        """
        self.store.add_source(module_id, path)
        logger.debug(f"{module_id} also depends on {normalize_path(path)}")

    def register_reconciler(
        self,
        module_id: str,
        reconciler: Reconciler | Callable[[Any, Any], Any] | None,
    ) -> None:
        """Attach a reconciler to a module (None removes it).

        Plain callables are wrapped in an UpdateReconciler.
        """
        if reconciler is not None and not isinstance(reconciler, Reconciler):
            reconciler = UpdateReconciler(reconciler)
        self.store.set_reconciler(module_id, reconciler)
        logger.debug(f"Reconciler for {module_id}: {reconciler!r}")

    def _attach_module_hooks(self) -> None:
        for record in self.store:
            self._attach_hook(record)

    def _attach_hook(self, record: ModuleRecord) -> None:
        hook = self.config.reconcile_hook
        if hook and record.reconciler is None and hasattr(record.exports, hook):
            record.reconciler = ModuleHookReconciler(hook)
            logger.debug(f"{record.display_name} reconciles itself via {hook}")

    async def _after_commit(self, record: ModuleRecord) -> None:
        if record.name:
            self.oracle.notify_module_changed(record.name)
        self._attach_module_hooks()

    # -------------------------- changes --------------------------

    async def on_file_changed(self, path: str | Path) -> list[ReconcileOutcome]:
        """Handle a changed source file.

        If a reconciliation is already in flight the path is queued and the
        in-flight call processes it; the returned list is then empty.
        """
        self._require_running("handle file changes")
        self._pending[normalize_path(path)] = None
        await self.bus.emit(EventType.FILE_CHANGED, path=str(path))
        if self._lock.locked():
            logger.debug(f"Reconciliation in flight, queued {path}")
            return []

        async with self._lock:
            return await self._drain_pending()

    async def trigger_reconciliation(self, invalidation: InvalidationSet) -> ReconcileOutcome:
        """Reconcile a precomputed invalidation set.

        Paths queued while it runs are reconciled before the lock is released;
        their outcomes land in the history only.
        """
        self._require_running("reconcile")
        async with self._lock:
            outcome = await self._reconcile(invalidation)
            await self._drain_pending()
        return outcome

    async def _drain_pending(self) -> list[ReconcileOutcome]:
        """Reconcile queued paths in arrival order. Caller holds the lock."""
        outcomes: list[ReconcileOutcome] = []
        while self._pending:
            path = next(iter(self._pending))
            del self._pending[path]
            invalidation = self.graph.on_file_changed(path)
            if invalidation.order:
                outcomes.append(await self._reconcile(invalidation))
        return outcomes

    async def _reconcile(self, invalidation: InvalidationSet) -> ReconcileOutcome:
        outcome = await self.protocol.reconcile(invalidation)
        self._history.append(outcome)
        return outcome

    def get_reconcile_history(self, limit: int = 10) -> list[ReconcileOutcome]:
        """Get recent reconciliation outcomes."""
        return self._history[-limit:]

    # -------------------------- steps --------------------------

    def sequence(self, sequence_id: str) -> StepSequence:
        """Get or create the step sequence with this id."""
        sequence = self._sequences.get(sequence_id)
        if sequence is None:
            sequence = StepSequence(sequence_id, bus=self.bus)
            self._sequences[sequence_id] = sequence
        return sequence

    async def run_steps(
        self,
        sequence_id: str,
        definitions: Sequence[StepDefinition],
        changed: Collection[str] = (),
        wait: bool = True,
    ) -> StepsResult:
        """Run (or re-run the changed suffix of) a step sequence.

        With `wait=False` the run is scheduled and a PENDING result carrying
        the task is returned.
        """
        self._require_running("run steps")
        sequence = self.sequence(sequence_id)
        definitions = with_fingerprints(definitions)
        if wait:
            return await sequence.run(definitions, changed)
        task = sequence.start(definitions, changed)
        return StepsResult(status=StepsStatus.PENDING, output=sequence.output, task=task)

    def steps_reconciler(
        self,
        module_id: str,
        sequence_id: str | None = None,
        select: StepSelector | str = "STEPS",
    ) -> StepsReconciler:
        """Register a StepsReconciler for a module and return it."""
        reconciler = StepsReconciler(self.sequence(sequence_id or module_id), select)
        self.register_reconciler(module_id, reconciler)
        return reconciler

    # -------------------------- watching --------------------------

    def create_watcher(self) -> SourceWatcher:
        """Watcher over the tracked roots plus every registered extra source."""
        return SourceWatcher(
            self.config.resolved_watch_dirs(self.root),
            patterns=self.config.patterns,
            exclude=self.config.ignore_patterns,
            accept=getattr(self.loader, "is_tracked", None),
            extra_files=self._extra_sources,
        )

    def _extra_sources(self) -> set[str]:
        return {source for record in self.store for source in record.extra_sources}

    async def _handle_changes(self, changes: list[SourceChange]) -> None:
        for change in changes:
            if change.kind == ChangeKind.DELETED:
                logger.warning(f"{change.path} was deleted; restart to drop it")
                continue
            await self.on_file_changed(change.path)

    def watch(self) -> asyncio.Task[None]:
        """Start the polling watcher in the background."""
        self._require_running("watch")
        if self._watch_task is not None and not self._watch_task.done():
            return self._watch_task

        self._stop_event = asyncio.Event()
        watcher = self.create_watcher()
        self._watch_task = asyncio.create_task(
            watcher.watch_loop(
                self._handle_changes,
                poll_interval=self.config.poll_interval,
                debounce_seconds=self.config.debounce_seconds,
                stop_event=self._stop_event,
            ),
            name="hotrun-watch",
        )
        return self._watch_task

    async def stop_watching(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
        self._watch_task = None
        self._stop_event = None
