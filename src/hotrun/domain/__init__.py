"""Domain models for hotrun."""

from hotrun.domain.enums import ChangeKind, ModuleStatus, SequenceState, StepsStatus
from hotrun.domain.models import (
    InvalidationSet,
    ModuleRecord,
    ModuleResult,
    ReconcileOutcome,
    StepDefinition,
    StepRun,
    StepsResult,
)

__all__ = [
    "ChangeKind",
    "ModuleStatus",
    "SequenceState",
    "StepsStatus",
    "InvalidationSet",
    "ModuleRecord",
    "ModuleResult",
    "ReconcileOutcome",
    "StepDefinition",
    "StepRun",
    "StepsResult",
]
