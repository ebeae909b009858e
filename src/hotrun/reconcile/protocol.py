"""Update-reconciliation protocol.

Walks an invalidation set bottom-up. Each attempted module is re-executed to
get candidate exports, then its reconciler decides whether to absorb them:
- Accepted: commit (swap exports, bump generation); the change stops here
- Declined or no reconciler: nothing is committed and the change escalates
  to the module's dependents, which see the old exports still live
- Declined with no dependents: terminal, the process needs a restart
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from hotrun.adapter.interface import LoadResult, ModuleLoader
from hotrun.domain.enums import ModuleStatus
from hotrun.domain.models import InvalidationSet, ModuleRecord, ModuleResult, ReconcileOutcome
from hotrun.errors import LoadError, ReconciliationRejected, UnreconciledTerminal
from hotrun.events import EventBus, EventType
from hotrun.graph.engine import DependencyGraph

logger = logging.getLogger(__name__)

CommitHook = Callable[[ModuleRecord], Awaitable[None] | None]


class ReconciliationProtocol:
    """Applies invalidation sets through per-module reconcilers."""

    def __init__(
        self,
        graph: DependencyGraph,
        loader: ModuleLoader,
        bus: EventBus | None = None,
        on_commit: CommitHook | None = None,
    ):
        self.graph = graph
        self.loader = loader
        self.bus = bus or EventBus()
        self.on_commit = on_commit

    @property
    def store(self):
        return self.graph.store

    async def reconcile(self, invalidation: InvalidationSet) -> ReconcileOutcome:
        """Reconcile every module of `invalidation` in order."""
        outcome = ReconcileOutcome(invalidation=invalidation)
        if not invalidation.order:
            return outcome

        members = set(invalidation.order)
        unreconciled: set[str] = set()
        failed_loads: set[str] = set()

        await self.bus.emit(
            EventType.RECONCILE_STARTED,
            path=invalidation.path,
            modules=list(invalidation.order),
        )

        for module_id in invalidation.order:
            record = self.store.get(module_id)
            if record is None:
                continue

            deps_in_set = record.dependencies & members
            escalated = deps_in_set & unreconciled
            if module_id not in invalidation.roots and not escalated:
                if deps_in_set & failed_loads:
                    failed_loads.add(module_id)
                    outcome.results.append(
                        ModuleResult(module_id, ModuleStatus.BLOCKED, record.generation)
                    )
                else:
                    outcome.results.append(
                        ModuleResult(module_id, ModuleStatus.SKIPPED, record.generation)
                    )
                continue

            result = await self._attempt(record)
            outcome.results.append(result)
            if result.status == ModuleStatus.LOAD_FAILED:
                failed_loads.add(module_id)
            elif result.status in (ModuleStatus.UNRECONCILED, ModuleStatus.TERMINAL):
                unreconciled.add(module_id)

        self._log_outcome(outcome)
        await self.bus.emit(
            EventType.RECONCILE_FINISHED,
            path=invalidation.path,
            committed=outcome.committed,
            requires_restart=outcome.requires_restart,
        )
        return outcome

    async def _attempt(self, record: ModuleRecord) -> ModuleResult:
        try:
            candidate = await self.loader.load_module(record)
        except Exception as e:
            error = LoadError(record.id, e)
            logger.error(str(error))
            await self.bus.emit(EventType.MODULE_LOAD_FAILED, module=record.display_name, error=str(e))
            return ModuleResult(record.id, ModuleStatus.LOAD_FAILED, record.generation, error)

        accepted, rejection = await self._ask_reconciler(record, candidate.exports)
        if accepted:
            try:
                await self._commit(record, candidate)
            except Exception as e:
                error = LoadError(record.id, e)
                logger.error(f"Commit failed for {record.display_name}: {e}")
                await self.bus.emit(EventType.MODULE_LOAD_FAILED, module=record.display_name, error=str(e))
                return ModuleResult(record.id, ModuleStatus.LOAD_FAILED, record.generation, error)
            return ModuleResult(record.id, ModuleStatus.COMMITTED, record.generation)

        if not self.store.dependents_of(record.id):
            terminal = UnreconciledTerminal(record.id)
            logger.warning(f"{record.display_name}: {rejection.reason}; full restart required")
            await self.bus.emit(
                EventType.RESTART_REQUIRED,
                module=record.display_name,
                reason=rejection.reason,
            )
            return ModuleResult(record.id, ModuleStatus.TERMINAL, record.generation, terminal)

        logger.warning(f"{record.display_name}: {rejection.reason}; escalating to dependents")
        await self.bus.emit(EventType.MODULE_REJECTED, module=record.display_name, reason=rejection.reason)
        return ModuleResult(record.id, ModuleStatus.UNRECONCILED, record.generation, rejection)

    async def _ask_reconciler(
        self, record: ModuleRecord, new_exports: Any
    ) -> tuple[bool, ReconciliationRejected | None]:
        reconciler = record.reconciler
        if reconciler is None:
            return False, ReconciliationRejected(record.id, "no reconciler registered")

        try:
            accepted = await reconciler.reconcile(record.exports, new_exports)
        except ReconciliationRejected as e:
            if e.module_id is None:
                e.module_id = record.id
            return False, e
        except Exception as e:
            logger.exception(f"Reconciler for {record.display_name} raised")
            return False, ReconciliationRejected(record.id, f"{type(e).__name__}: {e}")

        if not accepted:
            return False, ReconciliationRejected(record.id, "reconciler declined the update")
        return True, None

    async def _commit(self, record: ModuleRecord, candidate: LoadResult) -> None:
        await self.loader.commit(record, candidate)
        self.store.commit(record.id, candidate.exports)
        self.graph.replace_dependencies(record.id, candidate.dependencies)
        logger.info(f"Committed {record.display_name} (generation {record.generation})")

        if self.on_commit is not None:
            result = self.on_commit(record)
            if result is not None:
                await result
        await self.bus.emit(
            EventType.MODULE_COMMITTED,
            module=record.display_name,
            generation=record.generation,
        )

    def _log_outcome(self, outcome: ReconcileOutcome) -> None:
        if outcome.requires_restart:
            logger.warning(f"Hot-reload incomplete for {outcome.invalidation.path}: restart required")
        elif outcome.failed:
            logger.error(
                f"Hot-reload failed for {outcome.invalidation.path}: "
                f"{', '.join(r.module_id for r in outcome.failed)}"
            )
        else:
            logger.info(f"Hot-reload complete: {len(outcome.committed)} module(s) committed")
