"""Core domain models for hotrun.

- ModuleRecord: one per loaded unit, mutated on every committed reload
- InvalidationSet: ordered modules affected by a source change
- StepDefinition / StepRun: definition and runtime record of a pipeline step
- ModuleResult / ReconcileOutcome / StepsResult: reported outcomes
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from hotrun.domain.enums import ModuleStatus, StepsStatus
from hotrun.hot.oracle import source_fingerprint

if TYPE_CHECKING:
    from hotrun.reconcile.reconcilers import Reconciler
    from hotrun.steps.control import StepControl


def utc_now() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


@dataclass
class ModuleRecord:
    """Metadata for one loaded module.

    Dependents are not stored here; the store keeps them as an index.
    """

    id: str
    name: str | None = None
    dependencies: set[str] = field(default_factory=set)
    generation: int = 0
    reconciler: "Reconciler | None" = None
    exports: Any = None
    load_order: int = 0
    extra_sources: set[str] = field(default_factory=set)
    loaded_at: datetime = field(default_factory=utc_now)

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class InvalidationSet:
    """Modules affected by one change event, in dependency order."""

    order: tuple[str, ...] = ()
    roots: frozenset[str] = frozenset()
    path: str | None = None

    def __len__(self) -> int:
        return len(self.order)

    def __iter__(self):
        return iter(self.order)

    def __contains__(self, module_id: object) -> bool:
        return module_id in self.order


StepRunFn = Callable[[dict[str, Any], "StepControl"], Any]
RewindAction = Callable[[], Any]


@dataclass(frozen=True)
class StepDefinition:
    """One stage of a step sequence.

    `id` is the only identity carried across reloads. `fingerprint` is an
    optional body signature; when both the recorded run and the new definition
    carry one, a mismatch marks the step as changed.
    """

    id: str
    run: StepRunFn
    fingerprint: str | None = None

    @classmethod
    def of(cls, step_id: str, run: StepRunFn) -> "StepDefinition":
        """Build a definition whose fingerprint is taken from `run`'s source."""
        return cls(id=step_id, run=run, fingerprint=source_fingerprint(run))


@dataclass
class StepRun:
    """Runtime record of an executed step."""

    id: str
    output: dict[str, Any] = field(default_factory=dict)
    fingerprint: str | None = None
    rewind_actions: list[RewindAction] = field(default_factory=list)
    failed: bool = False
    started_at: datetime = field(default_factory=utc_now)


@dataclass
class ModuleResult:
    """What happened to one module during a reconciliation walk."""

    module_id: str
    status: ModuleStatus
    generation: int = 0
    error: Exception | None = None


@dataclass
class ReconcileOutcome:
    """Result of reconciling one invalidation set."""

    invalidation: InvalidationSet
    results: list[ModuleResult] = field(default_factory=list)
    finished_at: datetime = field(default_factory=utc_now)

    def status_of(self, module_id: str) -> ModuleStatus | None:
        for result in self.results:
            if result.module_id == module_id:
                return result.status
        return None

    @property
    def committed(self) -> list[str]:
        return [r.module_id for r in self.results if r.status == ModuleStatus.COMMITTED]

    @property
    def attempted(self) -> list[str]:
        """Module ids that were re-executed, in walk order."""
        return [
            r.module_id
            for r in self.results
            if r.status not in (ModuleStatus.SKIPPED, ModuleStatus.BLOCKED)
        ]

    @property
    def failed(self) -> list[ModuleResult]:
        return [
            r
            for r in self.results
            if r.status in (ModuleStatus.LOAD_FAILED, ModuleStatus.TERMINAL)
        ]

    @property
    def requires_restart(self) -> bool:
        return any(r.status == ModuleStatus.TERMINAL for r in self.results)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class StepsResult:
    """Result of one run of a step sequence."""

    status: StepsStatus
    output: dict[str, Any] = field(default_factory=dict)
    reran: list[str] = field(default_factory=list)
    unwound: list[str] = field(default_factory=list)
    error: Exception | None = None
    rewind_errors: list[Exception] = field(default_factory=list)
    task: Any = None  # asyncio.Task when status is PENDING

    @property
    def failed(self) -> bool:
        return self.status == StepsStatus.FAILED


def merge_outputs(outputs: list[Mapping[str, Any]]) -> dict[str, Any]:
    """Shallow-merge step outputs, later keys win."""
    merged: dict[str, Any] = {}
    for output in outputs:
        merged.update(output)
    return merged
