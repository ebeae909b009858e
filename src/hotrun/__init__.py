"""hotrun - development-time hot-reload engine with checkpointed steps."""

__version__ = "0.1.0"

from hotrun.domain.models import ModuleRecord, StepDefinition, StepRun
from hotrun.engine import HotReloadEngine
from hotrun.hot import HotFunction, SourceOracle, wrap_hot
from hotrun.reconcile import Reconciler, UpdateReconciler
from hotrun.steps import StepControl, StepSequence, StepsReconciler

__all__ = [
    "__version__",
    "HotFunction",
    "HotReloadEngine",
    "ModuleRecord",
    "Reconciler",
    "SourceOracle",
    "StepControl",
    "StepDefinition",
    "StepRun",
    "StepSequence",
    "StepsReconciler",
    "UpdateReconciler",
    "wrap_hot",
]
