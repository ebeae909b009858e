"""Checkpointed step execution."""

from hotrun.steps.control import StepControl
from hotrun.steps.reconciler import StepsReconciler, with_fingerprints
from hotrun.steps.sequence import StepSequence

__all__ = ["StepControl", "StepSequence", "StepsReconciler", "with_fingerprints"]
